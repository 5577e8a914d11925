"""Client engine for conversing with a local Ollama server."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .attachments import PdfTextExtractor, load_attachment
    from .catalog import ModelCatalog
    from .config import load_config
    from .conversation import Conversation
    from .events import EventBus
    from .exceptions import (
        ExtractionError,
        InvalidConfigurationError,
        NoModelsAvailableError,
        OllamaCompanionError,
        OllamaConnectionError,
        OllamaServerError,
        StreamCorruptionError,
    )
    from .models import Attachment, Message, ModelDescriptor, StreamMetrics
    from .orchestrator import MultiModalOrchestrator
    from .probe import ConnectionProbe
    from .reasoning import ReasoningExtractor, extract_reasoning
    from .session import ChatSession
    from .streaming import StreamingResponseEngine

__all__ = [
    "Attachment",
    "ChatSession",
    "ConnectionProbe",
    "Conversation",
    "EventBus",
    "ExtractionError",
    "InvalidConfigurationError",
    "Message",
    "ModelCatalog",
    "ModelDescriptor",
    "MultiModalOrchestrator",
    "NoModelsAvailableError",
    "OllamaCompanionError",
    "OllamaConnectionError",
    "OllamaServerError",
    "PdfTextExtractor",
    "ReasoningExtractor",
    "StreamCorruptionError",
    "StreamMetrics",
    "StreamingResponseEngine",
    "extract_reasoning",
    "load_attachment",
    "load_config",
]

_EXPORTS: dict[str, str] = {
    "Attachment": ".models",
    "Message": ".models",
    "ModelDescriptor": ".models",
    "StreamMetrics": ".models",
    "ChatSession": ".session",
    "ConnectionProbe": ".probe",
    "Conversation": ".conversation",
    "EventBus": ".events",
    "ModelCatalog": ".catalog",
    "MultiModalOrchestrator": ".orchestrator",
    "PdfTextExtractor": ".attachments",
    "load_attachment": ".attachments",
    "ReasoningExtractor": ".reasoning",
    "extract_reasoning": ".reasoning",
    "StreamingResponseEngine": ".streaming",
    "load_config": ".config",
    "ExtractionError": ".exceptions",
    "InvalidConfigurationError": ".exceptions",
    "NoModelsAvailableError": ".exceptions",
    "OllamaCompanionError": ".exceptions",
    "OllamaConnectionError": ".exceptions",
    "OllamaServerError": ".exceptions",
    "StreamCorruptionError": ".exceptions",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols so PDF and OCR libraries load only when used."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(module_name, __name__), name)
