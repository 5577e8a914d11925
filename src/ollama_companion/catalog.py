"""Locally available model list and the current selection."""

from __future__ import annotations

import logging
from typing import Any

from .exceptions import NoModelsAvailableError
from .models import ModelDescriptor
from .transport import OllamaTransport, map_exception, read_field

LOGGER = logging.getLogger(__name__)


def _model_name_matches(requested_model: str, available_model: str) -> bool:
    requested = requested_model.strip().lower()
    available = available_model.strip().lower()
    if requested == available:
        return True
    return ":" not in requested and available.startswith(f"{requested}:")


def _descriptor_from_entry(entry: Any) -> ModelDescriptor | None:
    name: str | None = None
    for key in ("name", "model"):
        value = read_field(entry, key)
        if isinstance(value, str) and value.strip():
            name = value.strip()
            break
    if name is None:
        return None

    size = read_field(entry, "size")
    modified_at = read_field(entry, "modified_at")
    return ModelDescriptor(
        name=name,
        size=int(size) if isinstance(size, (int, float)) and size >= 0 else None,
        modified_at=modified_at.isoformat()
        if hasattr(modified_at, "isoformat")
        else (str(modified_at) if modified_at else None),
    )


class ModelCatalog:
    """Fetches model descriptors and keeps the selected one."""

    def __init__(self, transport: OllamaTransport, preferred_model: str = "") -> None:
        self._transport = transport
        self.preferred_model = preferred_model.strip()
        self._models: tuple[ModelDescriptor, ...] = ()
        self._selected: ModelDescriptor | None = None

    @property
    def models(self) -> tuple[ModelDescriptor, ...]:
        return self._models

    @property
    def selected(self) -> ModelDescriptor | None:
        return self._selected

    @property
    def selected_name(self) -> str | None:
        return self._selected.name if self._selected is not None else None

    async def fetch_models(self) -> list[ModelDescriptor]:
        """Refresh the model list from the server.

        Raises:
            NoModelsAvailableError: The server answered with an empty list.
            OllamaCompanionError: Transport or server failure (mapped).
        """
        try:
            response = await self._transport.list_models()
        except Exception as exc:
            raise map_exception(exc, self._transport.host) from exc

        entries = read_field(response, "models") or []
        descriptors = [
            descriptor
            for descriptor in (_descriptor_from_entry(entry) for entry in entries)
            if descriptor is not None
        ]
        self._models = tuple(descriptors)
        LOGGER.info(
            "catalog.models.fetched",
            extra={"event": "catalog.models.fetched", "count": len(descriptors)},
        )

        if not descriptors:
            raise NoModelsAvailableError(
                "No models available. Pull a model with 'ollama pull <model>'."
            )

        if self._selected is None:
            preferred = self._find(self.preferred_model) if self.preferred_model else None
            self._selected = preferred or descriptors[0]
        return descriptors

    def _find(self, name: str) -> ModelDescriptor | None:
        for descriptor in self._models:
            if descriptor.name == name:
                return descriptor
        for descriptor in self._models:
            if _model_name_matches(name, descriptor.name):
                return descriptor
        return None

    def select(self, name: str) -> ModelDescriptor:
        """Select a model by exact name or by its untagged display name.

        A name the catalog has not seen yet is accepted as-is so a model can
        be chosen before the list was fetched.
        """
        normalized = name.strip()
        if not normalized:
            raise ValueError("Model name must not be empty.")
        descriptor = self._find(normalized) or ModelDescriptor(name=normalized)
        self._selected = descriptor
        return descriptor

    def clear_selection(self) -> None:
        """Forget the selection, for example once the server reports no models."""
        self._selected = None
