from __future__ import annotations

from fastapi import HTTPException

BAD_REQUEST_BODY = {"error": "Bad request"}


class ConversationValidationError(ValueError):
    """Inbound payload does not describe a conversation."""

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class RelayError(HTTPException):
    def __init__(
        self, status_code: int, err_type: str, message: str, hint: str | None = None
    ):
        payload = {"error": {"type": err_type, "code": status_code, "message": message}}
        if hint:
            payload["error"]["hint"] = hint
        super().__init__(status_code=status_code, detail=payload)
        self.err_type = err_type


class UpstreamInitiationError(RelayError):
    """The upstream service refused or could not accept the streaming call."""


class UpstreamAuthFailed(UpstreamInitiationError):
    def __init__(self, deployment: str, status: int, hint: str | None = None):
        super().__init__(
            502,
            "upstream_auth_failed",
            f"Upstream rejected credentials for deployment '{deployment}' (HTTP {status})",
            hint,
        )
        self.upstream_status = status


class UpstreamUnavailable(UpstreamInitiationError):
    def __init__(self, deployment: str, hint: str | None = None):
        super().__init__(
            503,
            "upstream_unavailable",
            f"Upstream unreachable for deployment '{deployment}'",
            hint,
        )


class UpstreamRejected(UpstreamInitiationError):
    def __init__(self, deployment: str, status: int, hint: str | None = None):
        super().__init__(
            502,
            "upstream_rejected",
            f"Upstream returned HTTP {status} for deployment '{deployment}'",
            hint,
        )
        self.upstream_status = status


class UpstreamStreamError(RuntimeError):
    """The upstream chunk sequence failed after streaming began."""
