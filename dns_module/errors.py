"""
Exception hierarchy for the diagnostics engine.

Every error carries a machine-readable code, a human message and the HTTP
status the API layer reports it with.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class DiagnosticsError(Exception):
    """Base exception for all diagnostics errors."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        """JSON body for the HTTP layer."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


class InputValidationError(DiagnosticsError):
    """Malformed user input, rejected before any network call."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("invalidInput", message, details)


class UnsupportedTypeError(InputValidationError):
    """Record type the codec has no shaping rule for."""

    def __init__(self, rtype: str) -> None:
        super().__init__(f"Unsupported record type: {rtype}", {"type": rtype})
        self.code = "unsupportedType"


class ResolverPolicyError(DiagnosticsError):
    """Custom resolver rejected by the SSRF allow/deny check."""

    status_code = 403

    def __init__(self, message: str, server: str) -> None:
        super().__init__("forbiddenServer", message, {"server": server})


class ResolutionError(DiagnosticsError):
    """A query failed after its transport gave up."""

    TIMEOUT = "timeout"
    NOT_FOUND = "notFound"
    SERVER_FAILURE = "serverFailure"
    INVALID_SERVER = "invalidServer"

    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(reason, message, details)
        self.reason = reason
        self.status_code = 404 if reason == self.NOT_FOUND else 500


class ParseError(ResolutionError):
    """Upstream DoH payload did not match the expected JSON shape."""

    def __init__(self, message: str) -> None:
        super().__init__(ResolutionError.SERVER_FAILURE, f"Malformed DoH response: {message}")
