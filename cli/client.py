from __future__ import annotations

from typing import Any, Dict, List

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the sampler service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def start_run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/runs", json=payload)

    def stop_run(self) -> Dict[str, Any]:
        return self._request("DELETE", "/runs")

    def get_status(self) -> Dict[str, Any]:
        return self._request("GET", "/runs")

    def get_series(self, hours: int) -> Dict[str, Any]:
        return self._request("GET", "/series", params={"hours": hours})

    def get_latest(self) -> Dict[str, Any]:
        response = self._client.get("/readings/latest")
        if response.status_code == 404:
            raise typer.BadParameter("No readings available yet.")
        return self._unwrap(response)

    def get_notifications(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/notifications")

    def write(self, text: str) -> Dict[str, Any]:
        return self._request("POST", "/writes", json={"text": text})

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = self._client.request(method, url, **kwargs)
        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Any:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

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
