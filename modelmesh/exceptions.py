"""
Custom exception hierarchy for modelmesh.

Structured error handling with clear categories:
- Configuration errors (caught when a provider is constructed)
- Provider runtime errors (a backend failed mid-stream)
- Fallback exhaustion (no candidate could serve the request)
- Selection and cancellation signals

Availability failures and catalog misses are never raised: the model
manager logs them and moves on to the next candidate. Tool failures are
returned as data (ToolResult), not raised.

Usage:
    from modelmesh.exceptions import ExhaustedFallbackError

    try:
        selection = await manager.select_model()
    except ExhaustedFallbackError as e:
        print(f"Nothing usable: {e} (tried {e.attempted})")
"""

from __future__ import annotations

from typing import Optional


class ModelMeshError(Exception):
    """
    Base exception for all modelmesh errors.

    All custom exceptions inherit from this, so you can catch
    `ModelMeshError` to handle any routing-layer error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(ModelMeshError):
    """
    Raised when a provider cannot be constructed from its config.

    Examples:
    - Missing API key for a backend that needs one
    - Unknown provider name
    - Invalid YAML model config
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider


# ── Runtime Errors ────────────────────────────────────────────────


class ProviderRuntimeError(ModelMeshError):
    """
    A provider failed while producing a stream.

    Wraps the backend SDK's own exception type so nothing
    backend-specific leaks past the provider boundary. The original
    exception is available as __cause__.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.model = model


class ExhaustedFallbackError(ModelMeshError):
    """
    Every candidate in a fallback chain was skipped or failed.

    Only the most recent underlying failure is named in the message.
    """

    def __init__(
        self,
        message: str,
        *,
        attempted: Optional[list[str]] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.attempted = list(attempted or [])


class ModelNotSelectedError(ModelMeshError):
    """Raised when streaming is requested before select_model() succeeded."""


class StreamCancelledError(ModelMeshError):
    """
    Raised inside a stream once its cancellation token has been triggered.

    Never treated as a fallback trigger.
    """

    def __init__(
        self,
        message: str = "Stream cancelled",
        *,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.reason = reason
