"""Application-level exception types for testsmith."""

from __future__ import annotations


class TestsmithError(Exception):
    """Base exception for testsmith."""

    __test__ = False


class ConfigurationError(TestsmithError):
    """Raised when a required external-service setting is missing."""


class ValidationError(TestsmithError):
    """Raised when a tool argument names the wrong kind of artifact or a missing path."""


class ServiceError(TestsmithError):
    """Raised when the embedding service, similarity index or generative backend fails."""


class ArtifactFailure(TestsmithError):
    """Raised when a generated artifact cannot be written, fails to compile or its tests fail."""

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class ToolError(TestsmithError):
    """Raised by tool handlers for expected failures such as a non-zero shell exit."""


class SpawnError(TestsmithError):
    """Raised when the worker process cannot be started."""


class StreamError(TestsmithError):
    """Raised when the worker output stream ends or errors."""
