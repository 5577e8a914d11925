"""Tests for the model catalog."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
import unittest

import httpx

from ollama_companion.catalog import ModelCatalog
from ollama_companion.exceptions import NoModelsAvailableError, OllamaConnectionError


class FakeTransport:
    host = "http://localhost:11434"

    def __init__(self, response=None, error: BaseException | None = None) -> None:
        self.response = response
        self.error = error
        self.calls = 0

    async def list_models(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response


TAGS = {
    "models": [
        {"name": "llama3:8b", "size": 4_700_000_000, "modified_at": "2024-05-01T10:00:00Z"},
        {"name": "qwen2.5:7b", "size": 4_400_000_000},
        {"model": "mistral"},
    ]
}


class ModelCatalogTests(unittest.IsolatedAsyncioTestCase):
    async def test_first_model_selected_by_default(self) -> None:
        catalog = ModelCatalog(FakeTransport(TAGS))  # type: ignore[arg-type]
        models = await catalog.fetch_models()

        self.assertEqual([m.name for m in models], ["llama3:8b", "qwen2.5:7b", "mistral"])
        self.assertEqual(catalog.selected_name, "llama3:8b")
        self.assertEqual(models[0].size, 4_700_000_000)
        self.assertEqual(models[0].modified_at, "2024-05-01T10:00:00Z")

    async def test_preferred_model_is_selected_tag_tolerantly(self) -> None:
        catalog = ModelCatalog(FakeTransport(TAGS), preferred_model="qwen2.5")  # type: ignore[arg-type]
        await catalog.fetch_models()
        self.assertEqual(catalog.selected_name, "qwen2.5:7b")

    async def test_existing_selection_survives_refresh(self) -> None:
        catalog = ModelCatalog(FakeTransport(TAGS))  # type: ignore[arg-type]
        await catalog.fetch_models()
        catalog.select("mistral")
        await catalog.fetch_models()
        self.assertEqual(catalog.selected_name, "mistral")

    async def test_sdk_objects_are_accepted(self) -> None:
        modified = datetime(2024, 5, 1, tzinfo=timezone.utc)
        response = SimpleNamespace(
            models=[SimpleNamespace(model="gemma3:4b", size=3_300_000_000, modified_at=modified)]
        )
        catalog = ModelCatalog(FakeTransport(response))  # type: ignore[arg-type]
        models = await catalog.fetch_models()

        self.assertEqual(models[0].name, "gemma3:4b")
        self.assertEqual(models[0].modified_at, modified.isoformat())

    async def test_empty_list_is_a_distinct_error(self) -> None:
        catalog = ModelCatalog(FakeTransport({"models": []}))  # type: ignore[arg-type]
        with self.assertRaises(NoModelsAvailableError):
            await catalog.fetch_models()
        self.assertIsNone(catalog.selected)

    async def test_transport_errors_are_mapped(self) -> None:
        catalog = ModelCatalog(FakeTransport(error=httpx.ConnectError("refused")))  # type: ignore[arg-type]
        with self.assertRaises(OllamaConnectionError):
            await catalog.fetch_models()

    def test_select_unknown_model_is_accepted(self) -> None:
        catalog = ModelCatalog(FakeTransport(TAGS))  # type: ignore[arg-type]
        self.assertEqual(catalog.select("phi3").name, "phi3")
        with self.assertRaises(ValueError):
            catalog.select("  ")

    async def test_clear_selection(self) -> None:
        catalog = ModelCatalog(FakeTransport(TAGS))  # type: ignore[arg-type]
        await catalog.fetch_models()
        self.assertIsNotNone(catalog.selected)
        catalog.clear_selection()
        self.assertIsNone(catalog.selected)
        self.assertIsNone(catalog.selected_name)


if __name__ == "__main__":
    unittest.main()
