"""Backend error type and coarse error classification.

Remote errors are surfaced verbatim. ``classify_error`` only picks friendlier
copy for a message, by substring match.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

NETWORK_ERROR_CODE = "network_error"
NO_ROWS_CODE = "PGRST116"


class BackendError(Exception):
    """An error returned by the hosted backend (REST, RPC or auth)."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: Any = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details
        self.hint = hint

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "details": self.details,
            "hint": self.hint,
        }

    @classmethod
    def from_response(cls, response: httpx.Response) -> BackendError:
        """Build an error from a PostgREST or GoTrue error response."""
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            text = response.text.strip() or response.reason_phrase or "Request failed"
            return cls(text, code=str(response.status_code), status=response.status_code)

        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or f"HTTP {response.status_code}"
        )
        code = body.get("code") or body.get("error_code") or body.get("error")
        return cls(
            str(message),
            code=str(code) if code is not None else None,
            status=response.status_code,
            details=body.get("details"),
            hint=body.get("hint"),
        )

    @classmethod
    def from_transport(cls, exc: httpx.TransportError) -> BackendError:
        return cls(f"Network request failed: {exc}", code=NETWORK_ERROR_CODE)


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    GENERAL = "general"


ERROR_COPY: dict[ErrorCategory, tuple[str, str]] = {
    ErrorCategory.NETWORK: (
        "Connection Problem",
        "Please check your internet connection and try again.",
    ),
    ErrorCategory.AUTH: (
        "Authentication Error",
        "Please check your credentials and try again.",
    ),
    ErrorCategory.VALIDATION: (
        "Validation Error",
        "Please check your input and try again.",
    ),
    ErrorCategory.GENERAL: (
        "Something Went Wrong",
        "We encountered an unexpected error. Please try again or contact support if the problem persists.",
    ),
}


def classify_error(message: str) -> ErrorCategory:
    """Map an error message to a coarse category."""
    lower = message.lower()
    if "network" in lower or "connection" in lower:
        return ErrorCategory.NETWORK
    if "invalid" in lower or "credentials" in lower:
        return ErrorCategory.AUTH
    if "email" in lower or "password" in lower:
        return ErrorCategory.VALIDATION
    return ErrorCategory.GENERAL


def describe_error(message: str) -> dict[str, str]:
    """Return category, title and friendly message for an error string."""
    category = classify_error(message)
    title, friendly = ERROR_COPY[category]
    return {"category": category.value, "title": title, "message": message, "suggestion": friendly}
