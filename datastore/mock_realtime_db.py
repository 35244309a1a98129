from __future__ import annotations
import copy
import json
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple

from datastore.errors import StoreWriteError
from settings import get_settings

_FORBIDDEN_CHARACTERS = frozenset(".#$[]")


def split_path(path: str) -> List[str]:
    """Split a ``/``-joined path into validated segments."""
    segments = [segment for segment in path.split("/") if segment]
    for segment in segments:
        if _FORBIDDEN_CHARACTERS.intersection(segment):
            raise ValueError(
                f"Path segment {segment!r} contains a reserved character (. # $ [ ])."
            )
    return segments


class MockRealtimeDatabase:
    """In-process hierarchical key/value tree modelled on a realtime database.

    Every node is either a leaf value or a mapping of child keys to nodes.
    Empty mappings are never stored: removing the last child of a node
    removes the node as well.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._root: Dict[str, Any] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def read(self, path: str) -> Optional[Any]:
        segments = split_path(path)
        with self._lock:
            node = self._find(segments)
            return copy.deepcopy(node)

    def read_range(
        self,
        path: str,
        start_at: Optional[str] = None,
        end_at: Optional[str] = None,
    ) -> List[Tuple[str, Any]]:
        """Return the children of ``path`` ordered by key, bounded inclusively."""
        segments = split_path(path)
        with self._lock:
            node = self._find(segments)
            if not isinstance(node, dict):
                return []
            children = [
                (key, copy.deepcopy(value))
                for key, value in sorted(node.items())
                if (start_at is None or key >= start_at)
                and (end_at is None or key <= end_at)
            ]
        return children

    def child_keys(self, path: str) -> List[str]:
        """Shallow listing of the keys directly under ``path``."""
        segments = split_path(path)
        with self._lock:
            node = self._find(segments)
            if not isinstance(node, dict):
                return []
            return sorted(node.keys())

    def batch_write(self, updates: Mapping[str, Any]) -> None:
        """Apply a multi-path update atomically; a ``None`` value deletes its path."""
        parsed = [(split_path(path), value) for path, value in updates.items()]
        for segments, _ in parsed:
            if not segments:
                raise ValueError("Batch writes must target a path below the root.")
        if not parsed:
            return

        with self._lock:
            staged = copy.deepcopy(self._root)
            for segments, value in parsed:
                if value is None or value == {}:
                    _remove(staged, segments)
                else:
                    _assign(staged, segments, value)
            self._persist(staged, operation="batch_write", path=None)
            self._root = staged

    def delete(self, path: str) -> bool:
        """Remove the subtree at ``path``; returns whether anything was removed."""
        segments = split_path(path)
        with self._lock:
            staged = copy.deepcopy(self._root)
            if segments:
                removed = _remove(staged, segments)
            else:
                removed = bool(staged)
                staged = {}
            if not removed:
                return False
            self._persist(staged, operation="delete", path=path)
            self._root = staged
        return True

    def _find(self, segments: List[str]) -> Optional[Any]:
        node: Any = self._root or None
        for segment in segments:
            if not isinstance(node, dict):
                return None
            node = node.get(segment)
            if node is None:
                return None
        return node

    def _persist(self, tree: Dict[str, Any], operation: str, path: Optional[str]) -> None:
        if not self.persistence_path:
            return
        try:
            self.persistence_path.write_text(json.dumps(tree, indent=2, sort_keys=True))
        except (OSError, TypeError, ValueError) as exc:
            raise StoreWriteError(operation, path, str(exc)) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        if isinstance(data, dict):
            self._root = data


def _assign(root: Dict[str, Any], segments: List[str], value: Any) -> None:
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[segments[-1]] = copy.deepcopy(value)


def _remove(root: Dict[str, Any], segments: List[str]) -> bool:
    trail: List[Tuple[Dict[str, Any], str]] = []
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            return False
        trail.append((node, segment))
        node = child
    if segments[-1] not in node:
        return False
    del node[segments[-1]]
    for parent, segment in reversed(trail):
        if parent[segment]:
            break
        del parent[segment]
    return True


@lru_cache
def build_default_database(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockRealtimeDatabase:
    settings = get_settings()
    database_name = settings.database_name if name is None else name
    database_path = settings.database_persistence_path if path is None else path
    persistence = Path(database_path) if database_path else None
    return MockRealtimeDatabase(name=database_name, persistence_path=persistence)
