"""Exceptions surfaced to callers of the session controller."""

from __future__ import annotations


class VoxError(Exception):
    default_detail: str = "Voice session error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ConnectionRejectedError(VoxError):
    default_detail = "Connection attempt rejected: a session is already active."


class CredentialExchangeError(VoxError):
    default_detail = "Credential exchange failed."

    def __init__(self, detail: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class SessionSetupError(VoxError):
    default_detail = "Live session setup failed."


class TransportError(VoxError):
    default_detail = "Live session transport error."
