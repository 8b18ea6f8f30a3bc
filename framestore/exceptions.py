"""
Exception hierarchy for framestore.

Every error raised by the storage layer derives from StorageError so callers
can tell storage failures apart from programming errors. Each error carries a
stable error code and optional context for logs and API responses.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for all storage subsystem errors."""

    default_code = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }

    def to_log_string(self) -> str:
        """Render a single-line description for log output."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        if self.cause is not None:
            parts.append(f"caused by {type(self.cause).__name__}: {self.cause}")
        return " ".join(parts)


# Configuration

class ProviderConfigurationError(StorageError):
    """A provider row carries a configuration blob that cannot be used."""
    default_code = "PROVIDER_CONFIGURATION_ERROR"


class ProviderNotImplementedError(ProviderConfigurationError):
    """The provider kind is declared but has no implementation."""
    default_code = "PROVIDER_NOT_IMPLEMENTED"


class ProviderNotFoundError(StorageError):
    """No enabled provider exists for the given id."""
    default_code = "PROVIDER_NOT_FOUND"


# Integrity

class AccessDeniedError(StorageError):
    """A file id resolved to a path outside the provider's storage root."""
    default_code = "ACCESS_DENIED"


class CacheIntegrityError(StorageError):
    """Cached bytes do not match the hash they were stored under."""
    default_code = "CACHE_INTEGRITY_ERROR"


# Transient

class TransientProviderError(StorageError):
    """A remote call failed in a way that may succeed on retry."""
    default_code = "TRANSIENT_PROVIDER_ERROR"


# Authorization

class AuthorizationError(StorageError):
    """OAuth authorization could not be completed."""
    default_code = "AUTHORIZATION_ERROR"


class ReauthorizationRequiredError(AuthorizationError):
    """Stored credentials are missing or were rejected; the user must re-consent."""
    default_code = "REAUTHORIZATION_REQUIRED"


class InsufficientScopesError(AuthorizationError):
    """The user granted fewer scopes than the provider requires."""
    default_code = "INSUFFICIENT_SCOPES"


# Files and operations

class StorageFileNotFoundError(StorageError):
    """The requested file does not exist in the provider."""
    default_code = "FILE_NOT_FOUND"


class UnsupportedOperationError(StorageError):
    """The provider does not support the requested operation."""
    default_code = "UNSUPPORTED_OPERATION"


class FileTooLargeError(StorageError):
    """An uploaded file exceeds the upload size limit."""
    default_code = "FILE_TOO_LARGE"


# Picker

class PickerError(StorageError):
    """The picker API returned an unusable response."""
    default_code = "PICKER_ERROR"


class PickerSessionNotReadyError(PickerError):
    """Media items were requested before the user finished picking."""
    default_code = "PICKER_SESSION_NOT_READY"


def handle_unexpected_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> StorageError:
    """
    Wrap an arbitrary exception in a StorageError and log it.

    Args:
        error: The exception that escaped normal handling
        context: Extra context to attach to the wrapped error

    Returns:
        The original error if it already is a StorageError, otherwise a wrapper
    """
    if isinstance(error, StorageError):
        if context:
            error.context.update(context)
        logger.error(error.to_log_string())
        return error

    wrapped = StorageError(
        message=str(error) or type(error).__name__,
        error_code="UNEXPECTED_ERROR",
        context=context,
        cause=error,
    )
    logger.error(wrapped.to_log_string(), exc_info=error)
    return wrapped
