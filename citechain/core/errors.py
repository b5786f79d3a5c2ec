"""Failure taxonomy shared by the provider clients, engines and handlers."""

from enum import Enum


class ErrorCode(str, Enum):
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    BAD_REQUEST = "BAD_REQUEST"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


_STATUS_CODES = {
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.TOO_MANY_REQUESTS: 429,
    ErrorCode.TIMEOUT: 504,
}


class CitechainError(Exception):
    """A classified failure with enough context to log meaningfully.

    ``provider`` and ``operation`` are set by the provider clients; the
    engines raise without them.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        cause: BaseException | None = None,
        provider: str | None = None,
        operation: str | None = None,
    ):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        self.provider = provider
        self.operation = operation

    def __str__(self) -> str:
        where = " ".join(p for p in (self.provider, self.operation) if p)
        prefix = f"[{self.code.value}]"
        if where:
            prefix = f"{prefix} {where}:"
        return f"{prefix} {self.message}"

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "provider": self.provider,
            "operation": self.operation,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


def status_code_for(code: ErrorCode | str) -> int:
    """HTTP status a handler should answer with for ``code``."""
    try:
        return _STATUS_CODES.get(ErrorCode(code), 500)
    except ValueError:
        return 500
