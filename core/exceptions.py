"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the export service.

- Provides clear exception hierarchy
- Separates retryable failures from fatal ones
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
ExportServiceError (base)
├── ConfigurationError        (fatal at startup)
├── RemoteError               (retried by the engine)
│   ├── AuthError
│   ├── TransportError
│   └── ApiError
└── StoreError
    └── ArtifactNotFoundError

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# BASE EXCEPTION
# ============================================================

class ExportServiceError(Exception):
    """
    Base exception for all export service errors.

    All exceptions carry:
    - context: for debugging
    - recoverable: whether a retry may succeed
    - timestamp: when the error occurred
    """

    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(ExportServiceError):
    """Missing or invalid required settings."""

    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# REMOTE API ERRORS
# ============================================================

class RemoteError(ExportServiceError):
    """Base for failures talking to the remote test-management API."""
    pass


class AuthError(RemoteError):
    """Credential acquisition failed (configuration or remote rejection)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        if body:
            context["body"] = body[:500]
        super().__init__(message, context=context, **kwargs)
        self.status_code = status_code
        self.body = body


class TransportError(RemoteError):
    """Network-level failure, no HTTP response received."""
    pass


class ApiError(RemoteError):
    """Non-success HTTP status returned by the remote API."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["status_code"] = status_code
        if body:
            context["body"] = body[:500]
        super().__init__(message, context=context, **kwargs)
        self.status_code = status_code
        self.body = body


# ============================================================
# STORAGE ERRORS
# ============================================================

class StoreError(ExportServiceError):
    """Artifact backend persistence failure."""

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        name: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if backend:
            context["backend"] = backend
        if name:
            context["name"] = name
        super().__init__(message, context=context, **kwargs)
        self.backend = backend
        self.name = name


class ArtifactNotFoundError(StoreError):
    """Requested artifact does not exist in the active backend."""

    default_recoverable = False


__all__ = [
    "ExportServiceError",
    "ConfigurationError",
    "RemoteError",
    "AuthError",
    "TransportError",
    "ApiError",
    "StoreError",
    "ArtifactNotFoundError",
]
