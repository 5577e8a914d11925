"""Connectivity probe with single-flight checks and optional monitoring."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from typing import Any

import httpx

from .transport import TAGS_PATH

LOGGER = logging.getLogger(__name__)


class ConnectionProbe:
    """Tracks whether the Ollama server answers on its model-list endpoint.

    Connectivity is advisory: :meth:`probe` never raises, it only flips the
    ``connected`` flag and notifies listeners when the value changes.
    """

    def __init__(
        self,
        host: str,
        *,
        timeout: float = 2.0,
        check_interval_seconds: float = 15,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.check_interval = check_interval_seconds
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.host, timeout=httpx.Timeout(timeout)
        )
        self._connected = False
        self._inflight: asyncio.Task[bool] | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._on_state_change: list[Callable[[bool, bool], Any]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def on_state_change(self, callback: Callable[[bool, bool], Any]) -> None:
        """Register ``callback(old, new)``; coroutine functions are awaited."""
        self._on_state_change.append(callback)

    async def probe(self) -> bool:
        """Check the server once; concurrent callers share the in-flight check."""
        task = self._inflight
        if task is None or task.done():
            task = asyncio.create_task(self._check())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            LOGGER.debug(
                "probe.coalesced", extra={"event": "probe.coalesced", "host": self.host}
            )
        connected = await asyncio.shield(task)
        await self._set_connected(connected)
        return connected

    def _clear_inflight(self, task: asyncio.Task[bool]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _check(self) -> bool:
        try:
            response = await self._http.get(TAGS_PATH, timeout=self.timeout)
        except Exception as exc:  # noqa: BLE001 - any transport failure means offline.
            LOGGER.info(
                "probe.failed",
                extra={
                    "event": "probe.failed",
                    "host": self.host,
                    "error_type": type(exc).__name__,
                },
            )
            return False
        if not response.is_success:
            LOGGER.info(
                "probe.status",
                extra={
                    "event": "probe.status",
                    "host": self.host,
                    "status_code": response.status_code,
                },
            )
        return response.is_success

    async def mark_disconnected(self) -> None:
        """Record a transport failure observed outside the probe."""
        await self._set_connected(False)

    async def mark_connected(self) -> None:
        await self._set_connected(True)

    async def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        old = self._connected
        self._connected = connected
        LOGGER.info(
            "probe.state.changed",
            extra={"event": "probe.state.changed", "old": old, "new": connected},
        )
        for callback in list(self._on_state_change):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(old, connected)
                else:
                    callback(old, connected)
            except Exception as exc:  # noqa: BLE001 - listeners must not break probing.
                LOGGER.error(
                    "probe.callback.failed",
                    extra={"event": "probe.callback.failed", "error": str(exc)},
                )

    async def start_monitoring(self) -> None:
        """Start polling the server every ``check_interval`` seconds."""
        if self._monitor_task is None:
            self._monitor_task = asyncio.create_task(self._monitor_loop())
            LOGGER.info("Connection monitoring started")

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None
        LOGGER.info("Connection monitoring stopped")

    async def _monitor_loop(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self.check_interval)

    async def aclose(self) -> None:
        await self.stop_monitoring()
        if self._owns_http:
            await self._http.aclose()
