"""Application-level exception types for llmverse."""

from __future__ import annotations


class LlmverseError(Exception):
    """Base exception for llmverse."""

    kind = "error"

    def render(self) -> str:
        return f"{self.kind}: {self}"


class ConfigurationError(LlmverseError):
    """Raised for configuration and startup validation errors."""

    kind = "configuration_error"


class InputError(LlmverseError):
    """Raised when a turn cannot be built from the user's input."""

    kind = "input_error"


class UnknownModelError(InputError):
    """Raised when a message targets a model that is not enabled."""


class VisionNotSupportedError(InputError):
    """Raised when images are sent to a model without vision support."""


class ImageFetchError(InputError):
    """Raised when an attached image cannot be downloaded."""


class ProviderError(LlmverseError):
    """Raised when a generation provider call fails."""

    kind = "provider_error"


class ToolError(LlmverseError):
    """Base exception for tool dispatch failures."""

    kind = "tool_error"


class ToolArgumentsError(ToolError):
    """Raised when tool-call arguments are not valid for the tool."""


class ToolExecutionError(ToolError):
    """Raised when a tool or the service behind it fails."""


class PersistenceError(LlmverseError):
    """Raised when a conversation store cannot persist a turn."""

    kind = "persistence_error"


class StreamClosedError(LlmverseError):
    """Raised when sending on a fragment stream that was already closed."""

    kind = "stream_closed"
