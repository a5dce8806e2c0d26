"""Consolidated exception hierarchy for Code Revolver.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum for type safety and autocompletion.
"""

from enum import StrEnum
from typing import Any

from starlette import status


class ErrorType(StrEnum):
    """Error type codes for API responses and log context."""

    SCAN = "scan_error"
    USAGE_FETCH = "usage_fetch_error"
    UNAUTHORIZED = "unauthorized_error"
    ACTIVATION = "activation_error"
    NOT_FOUND = "not_found_error"
    CONFIGURATION = "configuration_error"
    INTERNAL = "internal_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class CodeRevolverError(Exception):
    """Base exception for all Code Revolver errors.

    Supports an HTTP status code (used by the API layer) and structured details.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}


# ============================================================================
# Account Store Errors
# ============================================================================


class ScanError(CodeRevolverError):
    """The account store could not be read or parsed."""

    def __init__(
        self, message: str = "Failed to scan accounts", *, accounts_dir: str | None = None
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.SCAN,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"accounts_dir": accounts_dir} if accounts_dir else None,
        )
        self.accounts_dir = accounts_dir


class ActivationError(CodeRevolverError):
    """The store refused or failed to activate an account."""

    def __init__(self, message: str, *, file_path: str | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.ACTIVATION,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"file_path": file_path} if file_path else None,
        )
        self.file_path = file_path


class AccountNotFoundError(ActivationError):
    """Switch target is not part of the current account set."""

    def __init__(self, file_path: str) -> None:
        super().__init__(f"Account not found: {file_path}", file_path=file_path)
        self.error_type = ErrorType.NOT_FOUND
        self.status_code = status.HTTP_404_NOT_FOUND


# ============================================================================
# Usage Errors
# ============================================================================

UNAUTHORIZED_STATUS_CODES = frozenset({401, 403})


class UsageFetchError(CodeRevolverError):
    """Usage lookup failed for a single account.

    `status_code` carries the upstream HTTP status when one was received, so
    callers can tell an authorization rejection apart from a transient failure.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=(
                ErrorType.UNAUTHORIZED
                if status_code in UNAUTHORIZED_STATUS_CODES
                else ErrorType.USAGE_FETCH
            ),
            status_code=status_code or status.HTTP_502_BAD_GATEWAY,
        )
        self.upstream_status = status_code
        self.response_text = response_text

    @property
    def is_unauthorized(self) -> bool:
        """True when the upstream rejected the account's credentials."""
        return self.upstream_status in UNAUTHORIZED_STATUS_CODES


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(CodeRevolverError):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.CONFIGURATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


__all__ = [
    "ErrorType",
    "UNAUTHORIZED_STATUS_CODES",
    # Base
    "CodeRevolverError",
    # Account store
    "ScanError",
    "ActivationError",
    "AccountNotFoundError",
    # Usage
    "UsageFetchError",
    # Configuration
    "ConfigurationError",
]
