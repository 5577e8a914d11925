"""Tests for domain exception hierarchy."""

from __future__ import annotations

import unittest

from ollama_companion.exceptions import (
    ConfigValidationError,
    ExtractionError,
    InvalidConfigurationError,
    NoModelsAvailableError,
    OllamaCompanionError,
    OllamaConnectionError,
    OllamaServerError,
    StreamCorruptionError,
)


class ExceptionHierarchyTests(unittest.TestCase):
    """Validate exception inheritance contract."""

    def test_exception_hierarchy(self) -> None:
        for error_type in (
            InvalidConfigurationError,
            OllamaConnectionError,
            OllamaServerError,
            StreamCorruptionError,
            ExtractionError,
            NoModelsAvailableError,
        ):
            self.assertTrue(issubclass(error_type, OllamaCompanionError), error_type)
        self.assertTrue(issubclass(ConfigValidationError, InvalidConfigurationError))

    def test_server_error_keeps_status_code(self) -> None:
        error = OllamaServerError("boom", status_code=503)
        self.assertEqual(error.status_code, 503)
        self.assertEqual(str(error), "boom")
        self.assertIsNone(OllamaServerError("no status").status_code)


if __name__ == "__main__":
    unittest.main()
