from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the ingestion service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else None
        self._client = httpx.Client(
            base_url=config.base_url, timeout=config.timeout, headers=headers
        )

    def close(self) -> None:
        self._client.close()

    def register(self, username: str, password: str) -> None:
        self._request("POST", "/users/register", json={"username": username, "password": password})

    def login(self, username: str, password: str) -> Dict[str, Any]:
        return self._request(
            "POST", "/users/login", json={"username": username, "password": password}
        )

    def ingest(
        self,
        sensor_id: int,
        timestamp: datetime,
        co2: float,
        temperature: float,
    ) -> Dict[str, Any]:
        body = {
            "sensor_id": sensor_id,
            "timestamp": timestamp.isoformat(),
            "co2": co2,
            "temperature": temperature,
        }
        return self._request("POST", "/sensors/ingest", json=body)

    def list_sensors(self) -> List[Dict[str, Any]]:
        self._require_token()
        return self._request("GET", "/sensors")

    def list_readings(self, sensor_id: int, time_range: Optional[str] = None) -> Dict[str, Any]:
        self._require_token()
        params = {"range": time_range} if time_range else None
        return self._request("GET", f"/sensors/{sensor_id}/readings", params=params)

    def get_proof(self, sensor_id: int, reading_id: int) -> Dict[str, Any]:
        self._require_token()
        return self._request("GET", f"/sensors/{sensor_id}/readings/{reading_id}/proof")

    def _require_token(self) -> None:
        if not self._config.token:
            raise typer.BadParameter("This command needs --token or the API_TOKEN env var.")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            typer.secho(f"Request failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
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
