"""Line-delimited JSON streams from the controller.

``/connections`` answers either with a single JSON document (one snapshot)
or with a long-lived response carrying one JSON document per line. ``/logs``
always streams, one log line per JSON document. Both are read the same way:
every line is a frame, and when the server ends the response the stream
waits ``interval`` seconds and asks again.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from datetime import datetime
from typing import Any

import httpx

from ..types import (
    ConnectionRecord,
    ControllerConfig,
    ControllerError,
    LogEntry,
    LogsConfig,
    StreamConfig,
)
from .client import auth_headers, is_snapshot, records_from_payload

logger = logging.getLogger(__name__)


def parse_frame(line: str) -> list[ConnectionRecord] | None:
    """Decode one frame. Returns None for anything that is not a snapshot object."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable frame: %.80s", line)
        return None
    if not isinstance(payload, dict):
        logger.debug("Skipping non-object frame: %.80s", line)
        return None
    if not is_snapshot(payload):
        logger.debug("Skipping frame without a connections list: %.80s", line)
        return None
    # "connections": null is how an idle controller reports no connections
    return records_from_payload(payload)


def parse_log_line(line: str, now: datetime | None = None) -> LogEntry | None:
    """Decode one ``{"type": ..., "payload": ...}`` log frame."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable log frame: %.80s", line)
        return None
    if not isinstance(payload, dict):
        return None
    level = payload.get("type")
    text = payload.get("payload")
    if not isinstance(level, str) or not isinstance(text, str):
        logger.debug("Skipping log frame without type/payload: %.80s", line)
        return None
    return LogEntry(
        type=level.lower(),
        payload=text,
        time=now or datetime.now().astimezone(),
    )


class _LineStream:
    """Streaming GET on one controller path, reconnecting on failure."""

    path = "/"

    def __init__(
        self,
        url: str = "http://127.0.0.1:9090",
        secret: str = "",
        *,
        timeout: float = 10.0,
        interval: float = 1.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.interval = interval
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=auth_headers(secret),
            # Streaming responses may stay idle between frames
            timeout=httpx.Timeout(timeout, read=None),
            transport=transport,
        )

    def _params(self) -> dict[str, str]:
        return {}

    def _decode(self, line: str) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        await self._client.aclose()

    async def frames(self) -> AsyncIterator[Any]:
        """Yield decoded frames from a single request until the server ends it."""
        async with self._client.stream("GET", self.path, params=self._params()) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise ControllerError(
                    f"HTTP {resp.status_code}: {resp.text}",
                    status_code=resp.status_code,
                )
            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                decoded = self._decode(line)
                if decoded is not None:
                    yield decoded

    async def run(
        self,
        on_frame: Callable[[Any], None],
        stop: asyncio.Event | None = None,
    ) -> None:
        """Deliver frames to *on_frame* until *stop* is set."""
        delay = self.reconnect_delay
        logger.info("Streaming %s from %s", self.path, self.url)
        while not (stop and stop.is_set()):
            try:
                async with aclosing(self.frames()) as frames:
                    async for item in frames:
                        on_frame(item)
                        delay = self.reconnect_delay
                        if stop and stop.is_set():
                            return
            except (httpx.HTTPError, ControllerError) as e:
                logger.warning(
                    "Stream %s error: %s (retrying in %.1fs)", self.path, e, delay,
                )
                await self._wait(delay, stop)
                delay = min(delay * 2, self.max_reconnect_delay)
                continue
            await self._wait(self.interval, stop)

    @staticmethod
    async def _wait(seconds: float, stop: asyncio.Event | None) -> None:
        if stop is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class ConnectionStream(_LineStream):
    """Feeds decoded snapshots to a callback, reconnecting on failure."""

    path = "/connections"

    @classmethod
    def from_config(
        cls,
        controller: ControllerConfig,
        stream: StreamConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ConnectionStream:
        return cls(
            url=controller.url,
            secret=controller.secret,
            timeout=controller.timeout,
            interval=stream.interval,
            reconnect_delay=stream.reconnect_delay,
            max_reconnect_delay=stream.max_reconnect_delay,
            transport=transport,
        )

    def _decode(self, line: str) -> list[ConnectionRecord] | None:
        return parse_frame(line)


class LogStream(_LineStream):
    """Feeds controller log lines to a callback, one LogEntry at a time.

    *level* is passed to the controller, which filters server-side; an
    empty level leaves the controller's own level in effect.
    """

    path = "/logs"

    def __init__(
        self,
        url: str = "http://127.0.0.1:9090",
        secret: str = "",
        *,
        level: str = "",
        **kwargs,
    ) -> None:
        super().__init__(url, secret, **kwargs)
        self.level = level

    @classmethod
    def from_config(
        cls,
        controller: ControllerConfig,
        stream: StreamConfig,
        logs: LogsConfig,
        level: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> LogStream:
        return cls(
            url=controller.url,
            secret=controller.secret,
            level=logs.level if level is None else level,
            timeout=controller.timeout,
            interval=stream.interval,
            reconnect_delay=stream.reconnect_delay,
            max_reconnect_delay=stream.max_reconnect_delay,
            transport=transport,
        )

    def _params(self) -> dict[str, str]:
        return {"level": self.level} if self.level else {}

    def _decode(self, line: str) -> LogEntry | None:
        return parse_log_line(line)
