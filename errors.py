"""Error taxonomy shared by the workflow, registry and background sweep."""

from __future__ import annotations


class ShiftExchangeError(Exception):
    """Base class for every error raised by the bot's own code."""


class UserInputError(ShiftExchangeError):
    """Malformed user text; the wizard re-prompts the same step."""

    def __init__(self, message: str, *, reason: str = "invalid") -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class PreconditionError(ShiftExchangeError):
    """A step cannot start yet, e.g. claiming without a stored profile."""


class ConflictError(ShiftExchangeError):
    """Duplicate offer or a shift that is already gone.

    ``reason`` is one of ``duplicate``, ``gone``, ``own`` or ``started``.
    """

    def __init__(self, message: str, *, reason: str = "gone") -> None:
        super().__init__(message)
        self.reason = reason


class TransportError(ShiftExchangeError):
    """Delivery of a chat message failed."""

    def __init__(self, user_id: int, message: str) -> None:
        super().__init__(f"delivery to {user_id} failed: {message}")
        self.user_id = user_id


class StoreError(ShiftExchangeError):
    """The persistence backend failed."""


class SchedulerItemError(ShiftExchangeError):
    """Processing of a single shift during a sweep failed."""

    def __init__(self, shift_id: int, cause: BaseException) -> None:
        super().__init__(f"sweep failed for shift {shift_id}: {cause}")
        self.shift_id = shift_id
        self.cause = cause
