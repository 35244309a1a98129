"""Failures raised by the durable store."""

from __future__ import annotations

from typing import Optional


class DurableStoreError(RuntimeError):
    """A durable store operation could not be completed."""

    def __init__(self, operation: str, path: Optional[str], message: str) -> None:
        super().__init__(f"{operation} failed for {path or '/'!r}: {message}")
        self.operation = operation
        self.path = path


class StoreReadError(DurableStoreError):
    pass


class StoreWriteError(DurableStoreError):
    pass
