"""HTTP client for the proxy's external controller API."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from ..core.reconciler import parse_record
from ..types import ConnectionRecord, ControllerConfig, ControllerError

logger = logging.getLogger(__name__)


def auth_headers(secret: str) -> dict[str, str]:
    if not secret:
        return {}
    return {"Authorization": f"Bearer {secret}"}


def is_snapshot(payload) -> bool:
    """True when *payload* carries a ``connections`` list; ``null`` counts as empty."""
    if not isinstance(payload, dict) or "connections" not in payload:
        return False
    return payload["connections"] is None or isinstance(payload["connections"], list)


def records_from_payload(payload) -> list[ConnectionRecord]:
    """Extract records from a ``/connections`` body; malformed ones are skipped."""
    if not isinstance(payload, dict):
        return []
    raw = payload.get("connections") or []
    if not isinstance(raw, list):
        return []
    records = []
    for item in raw:
        record = parse_record(item)
        if record is not None:
            records.append(record)
    return records


class ControllerClient:
    """Async wrapper around the ``/connections`` endpoints."""

    def __init__(
        self,
        url: str = "http://127.0.0.1:9090",
        secret: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=auth_headers(secret),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: ControllerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ControllerClient:
        return cls(
            url=config.url,
            secret=config.secret,
            timeout=config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ControllerClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str) -> httpx.Response:
        try:
            resp = await self._client.request(method, path)
        except httpx.HTTPError as e:
            raise ControllerError(f"{method} {self.url}{path} failed: {e}") from e
        if resp.status_code >= 400:
            raise ControllerError(
                f"HTTP {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        return resp

    async def fetch_snapshot(self) -> list[ConnectionRecord]:
        """Return the connections open right now."""
        resp = await self._request("GET", "/connections")
        try:
            payload = resp.json()
        except ValueError as e:
            raise ControllerError(
                f"Invalid JSON from controller: {e}", status_code=resp.status_code,
            ) from e
        if not is_snapshot(payload):
            raise ControllerError(
                f"Unexpected response from controller: {resp.text[:80]}",
                status_code=resp.status_code,
            )
        return records_from_payload(payload)

    async def close_connection(self, conn_id: str) -> None:
        await self._request("DELETE", f"/connections/{quote(conn_id, safe='')}")
        logger.info("Closed connection %s", conn_id)

    async def close_all(self) -> None:
        await self._request("DELETE", "/connections")
        logger.info("Closed all connections")
