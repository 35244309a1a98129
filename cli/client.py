from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def send_reading(self, device_id: str, level: float) -> bool:
        response = self._request("POST", "/upload", json={"deviceId": device_id, "level": level})
        payload = response.json()
        return bool(payload.get("success"))

    def get_latest(self, device_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/latest/{device_id}").json()

    def get_history(self, device_id: str, days: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"days": days} if days is not None else None
        payload = self._request("GET", f"/history/{device_id}", params=params).json()
        if not isinstance(payload, list):
            raise typer.BadParameter("Unexpected response payload when fetching history.")
        return payload

    def flush(self) -> Dict[str, Any]:
        return self._request("POST", "/maintenance/flush").json()

    def sweep(self) -> Dict[str, Any]:
        return self._request("POST", "/maintenance/retention").json()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.RequestError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1) from exc
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
