from __future__ import annotations

from typing import Optional


class CxError(Exception):
    """Base class for errors raised by the cxsast clients."""


class SessionExpiredError(CxError):
    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "A session is required to make this call. Use login() to establish a new session first."
        )


class ResponseError(CxError):
    """The service answered, but reported that the call failed."""

    def __init__(self, message: str, endpoint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint

    def __str__(self) -> str:
        return f"{self.message} (from {self.endpoint})"
