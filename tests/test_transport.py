"""Tests for the HTTP transport and exception mapping."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
import unittest

import httpx
from ollama import ResponseError

from ollama_companion.exceptions import (
    InvalidConfigurationError,
    OllamaConnectionError,
    OllamaServerError,
)
from ollama_companion.transport import OllamaTransport, map_exception, read_field

HOST = "http://localhost:11434"


class FakeSdkClient:
    """Stands in for ``ollama.AsyncClient`` and records keyword arguments."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []

    async def list(self):
        self.calls.append(("list", {}))
        return {"models": [{"model": "llama3:8b"}]}

    async def chat(self, **kwargs):
        self.calls.append(("chat", kwargs))
        await asyncio.sleep(self.delay)
        return {"message": {"content": "hi"}}

    async def generate(self, **kwargs):
        self.calls.append(("generate", kwargs))
        return {"response": "a picture"}


class MapExceptionTests(unittest.TestCase):
    def test_sdk_response_error_keeps_status(self) -> None:
        mapped = map_exception(ResponseError("model 'x' not found", 404), HOST)
        self.assertIsInstance(mapped, OllamaServerError)
        self.assertEqual(mapped.status_code, 404)
        self.assertIn("404", str(mapped))

    def test_connection_failures(self) -> None:
        for exc in (httpx.ConnectError("refused"), ConnectionRefusedError("refused")):
            mapped = map_exception(exc, HOST)
            self.assertIsInstance(mapped, OllamaConnectionError)
            self.assertIn(HOST, str(mapped))

    def test_timeouts(self) -> None:
        for exc in (httpx.ReadTimeout("slow"), asyncio.TimeoutError()):
            self.assertIsInstance(map_exception(exc, HOST), OllamaConnectionError)

    def test_bad_url_is_configuration_error(self) -> None:
        mapped = map_exception(httpx.UnsupportedProtocol("ftp"), "ftp://x")
        self.assertIsInstance(mapped, InvalidConfigurationError)

    def test_domain_errors_pass_through(self) -> None:
        original = OllamaServerError("boom", status_code=500)
        self.assertIs(map_exception(original, HOST), original)


class ReadFieldTests(unittest.TestCase):
    def test_dict_attribute_and_missing(self) -> None:
        self.assertEqual(read_field({"a": 1}, "a"), 1)
        self.assertEqual(read_field(SimpleNamespace(a=2), "a"), 2)
        self.assertIsNone(read_field(None, "a"))
        self.assertIsNone(read_field({"a": 1}, "b"))


class OllamaTransportTests(unittest.IsolatedAsyncioTestCase):
    async def test_non_streaming_calls_disable_streaming(self) -> None:
        client = FakeSdkClient()
        transport = OllamaTransport(HOST, client=client, http_client=httpx.AsyncClient())

        await transport.chat("gemma3:4b", [{"role": "user", "content": "q"}], {"seed": 1})
        await transport.generate("llava:7b", "describe", ["YWJj"])
        await transport.list_models()

        chat_kwargs = client.calls[0][1]
        self.assertFalse(chat_kwargs["stream"])
        self.assertEqual(chat_kwargs["options"], {"seed": 1})
        generate_kwargs = client.calls[1][1]
        self.assertEqual(generate_kwargs["images"], ["YWJj"])
        self.assertFalse(generate_kwargs["stream"])
        self.assertIsNone(generate_kwargs["options"])
        self.assertEqual(client.calls[2][0], "list")
        await transport._http.aclose()

    async def test_whole_call_timeout(self) -> None:
        transport = OllamaTransport(
            HOST,
            resource_timeout=0.01,
            client=FakeSdkClient(delay=1.0),
            http_client=httpx.AsyncClient(),
        )
        with self.assertRaises(asyncio.TimeoutError):
            await transport.chat("m", [])
        await transport._http.aclose()

    async def test_aclose_leaves_injected_clients_open(self) -> None:
        http = httpx.AsyncClient()
        transport = OllamaTransport(HOST, client=FakeSdkClient(), http_client=http)
        await transport.aclose()
        self.assertFalse(http.is_closed)
        await http.aclose()

    async def test_aclose_closes_owned_clients(self) -> None:
        transport = OllamaTransport(HOST)
        await transport.aclose()
        self.assertTrue(transport._http.is_closed)


if __name__ == "__main__":
    unittest.main()
