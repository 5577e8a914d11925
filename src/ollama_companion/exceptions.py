"""Domain exception hierarchy for the Ollama companion engine."""

from __future__ import annotations


class OllamaCompanionError(RuntimeError):
    """Base class for all domain-level errors."""


class InvalidConfigurationError(OllamaCompanionError):
    """Raised for a bad server URL, missing model selection, or similar setup faults."""


class ConfigValidationError(InvalidConfigurationError):
    """Raised when configuration cannot be validated safely."""


class OllamaConnectionError(OllamaCompanionError):
    """Raised when the Ollama host cannot be reached."""


class OllamaServerError(OllamaCompanionError):
    """Raised when the server answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamCorruptionError(OllamaCompanionError):
    """Raised for a single undecodable stream line; callers skip it."""


class ExtractionError(OllamaCompanionError):
    """Raised when an attachment cannot be loaded or its text cannot be extracted."""


class NoModelsAvailableError(OllamaCompanionError):
    """Raised when the server is reachable but reports no local models."""
