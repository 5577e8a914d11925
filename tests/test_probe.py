"""Tests for the connectivity probe."""

from __future__ import annotations

import asyncio
import unittest

import httpx

from ollama_companion.probe import ConnectionProbe

HOST = "http://localhost:11434"


def _probe(handler) -> tuple[ConnectionProbe, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=HOST)
    return ConnectionProbe(HOST, timeout=2.0, http_client=http), http


class ConnectionProbeTests(unittest.IsolatedAsyncioTestCase):
    async def test_success_marks_connected(self) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"models": []})

        probe, http = _probe(handler)
        self.assertFalse(probe.connected)
        self.assertTrue(await probe.probe())
        self.assertTrue(probe.connected)
        self.assertEqual(paths, ["/api/tags"])
        await http.aclose()

    async def test_non_success_status_is_offline(self) -> None:
        probe, http = _probe(lambda request: httpx.Response(503))
        self.assertFalse(await probe.probe())
        self.assertFalse(probe.connected)
        await http.aclose()

    async def test_transport_error_never_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        probe, http = _probe(handler)
        self.assertFalse(await probe.probe())
        await http.aclose()

    async def test_concurrent_probes_share_one_request(self) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"models": []})

        probe, http = _probe(handler)
        results = await asyncio.gather(probe.probe(), probe.probe(), probe.probe())

        self.assertEqual(results, [True, True, True])
        self.assertEqual(calls, 1)
        self.assertFalse(probe.in_flight)

        # A later probe issues a fresh request.
        await probe.probe()
        self.assertEqual(calls, 2)
        await http.aclose()

    async def test_state_change_callbacks(self) -> None:
        changes: list[tuple[bool, bool]] = []
        probe, http = _probe(lambda request: httpx.Response(200))
        probe.on_state_change(lambda old, new: changes.append((old, new)))

        await probe.probe()
        await probe.probe()
        await probe.mark_disconnected()

        self.assertEqual(changes, [(False, True), (True, False)])
        self.assertFalse(probe.connected)
        await http.aclose()

    async def test_monitoring_polls_until_stopped(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=HOST)
        probe = ConnectionProbe(HOST, check_interval_seconds=0.01, http_client=http)
        await probe.start_monitoring()
        await asyncio.sleep(0.05)
        await probe.stop_monitoring()

        self.assertGreaterEqual(calls, 2)
        self.assertTrue(probe.connected)
        await probe.aclose()
        self.assertFalse(http.is_closed)
        await http.aclose()


if __name__ == "__main__":
    unittest.main()
