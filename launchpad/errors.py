"""
launchpad.errors — Error Taxonomy
==================================

One exception type, :class:`LaunchpadError`, carries an :class:`ErrorCode`.
Workers use :func:`is_retryable` to decide between backoff and the
dead-letter list; user-triggered operations surface
:func:`user_friendly_message` instead of raw codes.

The string form is ``CODE::message`` so an error that crossed a process
boundary as text (e.g. ``jobs.last_error``) can be parsed back with
:meth:`LaunchpadError.from_message`.
"""

from __future__ import annotations

import enum
import re

import httpx


class ErrorCode(enum.StrEnum):
    BAD_PARAMS = "BAD_PARAMS"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_STATE = "INVALID_STATE"
    INVALID_TRADING_STATE = "INVALID_TRADING_STATE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    UNKNOWN = "UNKNOWN"


# Codes the job queue retries with backoff; everything else is terminal.
TRANSIENT_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.INTERNAL_ERROR,
    ErrorCode.UNKNOWN,
})

_MESSAGE_RE = re.compile(r"^(\w+)(?:::(.*))?$", re.DOTALL)


class LaunchpadError(Exception):
    """Application error with a machine-readable :class:`ErrorCode`.

    ``retry_after`` is an optional hint (seconds) set by rate-limited
    upstream calls.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        cause: BaseException | None = None,
        *,
        retry_after: float | None = None,
    ) -> None:
        if code == ErrorCode.UNKNOWN:
            text = message or ""
        else:
            text = f"{code.value}::{message}" if message else code.value
        super().__init__(text)
        self.code = code
        self.description = message
        self.retry_after = retry_after
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_message(cls, message: str) -> LaunchpadError:
        code, description = parse_error_message(message)
        return cls(code, description)

    @classmethod
    def from_exception(cls, exc: BaseException) -> LaunchpadError:
        if isinstance(exc, LaunchpadError):
            return exc
        return cls(ErrorCode.INTERNAL_ERROR, str(exc) or type(exc).__name__, exc)


def parse_error_message(message: str) -> tuple[ErrorCode, str | None]:
    """Split ``CODE::message`` back into ``(ErrorCode, message)``.

    Unknown prefixes map to ``UNKNOWN`` with the original text preserved.
    """
    match = _MESSAGE_RE.match(message)
    if match:
        prefix, rest = match.group(1), match.group(2)
        if prefix in ErrorCode.__members__:
            return ErrorCode(prefix), rest
        if rest:
            return ErrorCode.UNKNOWN, rest
    return ErrorCode.UNKNOWN, message


def is_retryable(exc: BaseException) -> bool:
    """True for transient failures (network, throttling, upstream 5xx)."""
    if isinstance(exc, LaunchpadError):
        return exc.code in TRANSIENT_CODES
    return isinstance(exc, httpx.TransportError | TimeoutError | ConnectionError)


def error_code_of(exc: BaseException) -> ErrorCode:
    if isinstance(exc, LaunchpadError):
        return exc.code
    if is_retryable(exc):
        return ErrorCode.INTERNAL_ERROR
    return ErrorCode.UNKNOWN


def user_friendly_message(error: BaseException) -> str:
    """Map an error to the message category shown to end users."""
    code = error_code_of(error)
    if code in (ErrorCode.BAD_PARAMS, ErrorCode.NOT_FOUND, ErrorCode.INVALID_STATE):
        return "Some inputs don't make sense."
    if code in (ErrorCode.INVALID_TRADING_STATE, ErrorCode.RATE_LIMITED):
        return "We cannot fulfill your request at this time."
    if code == ErrorCode.UNAUTHORIZED:
        return "Please sign in again."
    return "Something went wrong."
