"""Structured exception hierarchy for enrollment syncs.

Every failure raised by the retrieval engine derives from SyncError so callers
can tell "the run was cancelled" apart from "upstream rejected the request"
without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "SyncError",
    "Cancelled",
    "TransientError",
    "AuthError",
    "TerminalHTTPError",
    "DecodeError",
    "BatchFailed",
    "SinkError",
    "ConfigurationError",
]


class SyncError(Exception):
    """Base exception for all sync errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]
        if details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in details.items())
        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class Cancelled(SyncError):
    """The run's deadline expired or the caller aborted it.

    Never retried and never counted as an ordinary page failure.
    """

    def __init__(self, message: str = "operation cancelled", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class TransientError(SyncError):
    """Network error, HTTP 429 or HTTP 5xx. Retried by the backoff executor."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
        retry_after: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after

        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class AuthError(SyncError):
    """Authentication exchange failed or returned no usable token."""

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.cause = cause

        details = kwargs.pop("details", {})
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check that the user token is set and still accepted by the API."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class TerminalHTTPError(SyncError):
    """HTTP 4xx other than 429. Not retried."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str = "",
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.body = body

        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if body:
            details["body"] = body
        super().__init__(message, details=details, **kwargs)


class DecodeError(SyncError):
    """Response body did not match the expected envelope. Not retried."""


class BatchFailed(SyncError):
    """Every page of a batch failed with a non-cancellation error."""

    def __init__(self, start_page: int, page_count: int, **kwargs: Any) -> None:
        self.start_page = start_page
        self.page_count = page_count
        end_page = start_page + page_count - 1
        super().__init__(
            f"all {page_count} requests failed in batch {start_page}-{end_page}",
            **kwargs,
        )


class SinkError(SyncError):
    """A sink operation failed after retries."""

    def __init__(
        self,
        message: str,
        *,
        target: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.target = target
        self.cause = cause

        details = kwargs.pop("details", {})
        if target:
            details["target"] = target
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__
        super().__init__(message, details=details, **kwargs)


class ConfigurationError(SyncError):
    """Settings or sync request are invalid or incomplete."""

    def __init__(
        self,
        message: str,
        *,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if issues:
            details["issue_count"] = len(issues)
            issue_lines = "\n".join(f"  - {issue}" for issue in issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)
