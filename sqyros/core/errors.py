"""Error taxonomy shared by agents, the ledger and the HTTP layer."""

from __future__ import annotations

from typing import Any


class SqyrosError(RuntimeError):
    """Base error. `status_code` is what the HTTP layer answers with."""

    status_code: int = 500
    stage: str = "unknown"
    public_message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.public_message or str(self) or "Internal server error"}


class InvalidRequestError(SqyrosError):
    status_code = 400
    stage = "input"


class AuthError(SqyrosError):
    status_code = 401
    stage = "auth"


class QuotaExceededError(SqyrosError):
    """The caller's subscription tier has used up its allowance for the period."""

    status_code = 429
    stage = "quota"

    def __init__(self, message: str, *, upgrade_url: str = "/pricing") -> None:
        super().__init__(message)
        self.message = message
        self.upgrade_url = upgrade_url

    def to_payload(self) -> dict[str, Any]:
        return {"error": "limit_exceeded", "message": self.message, "upgradeUrl": self.upgrade_url}


class UpstreamError(SqyrosError):
    """The LLM provider failed or answered with something unusable.

    The original provider error is kept on `__cause__` and logged; callers only
    ever see `public_message`.
    """

    status_code = 500
    stage = "upstream"

    def __init__(self, message: str, *, public_message: str = "Upstream model request failed") -> None:
        super().__init__(message)
        self.public_message = public_message


class LedgerWriteError(SqyrosError):
    """Usage bookkeeping failed. Logged, never surfaced to the caller."""

    stage = "ledger"
