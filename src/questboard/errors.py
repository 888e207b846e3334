"""Domain error taxonomy.

Every error carries a stable ``code`` that is surfaced verbatim to API
callers, plus the HTTP status it maps to. Conflicts and precondition
failures describe legitimate business state and are never retried.
"""

from __future__ import annotations


class QuestEngineError(Exception):
    """Base class for errors surfaced to callers."""

    code: str = "error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.code.replace("_", " ").capitalize()

    @property
    def message(self) -> str:
        return str(self)


# --- validation ---


class ValidationFailed(QuestEngineError):
    code = "validation_error"
    status_code = 422


# --- not found ---


class QuestNotFound(QuestEngineError):
    code = "not_found"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Quest not found"


class NoWinnerRecord(QuestEngineError):
    code = "no_winner_record"
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Winners have not been computed for this quest"


# --- permission ---


class NotQuestCreator(QuestEngineError):
    code = "forbidden"
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "Only the quest creator can perform this action"


# --- conflict ---


class NotActive(QuestEngineError):
    code = "not_active"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Quest is not active"


class Expired(QuestEngineError):
    code = "expired"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Quest has expired"


class CapacityReached(QuestEngineError):
    code = "capacity_reached"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Quest has reached its maximum number of completions"


class AlreadyCompleted(QuestEngineError):
    code = "already_completed"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Quest already completed by this user"


class InvalidTransition(QuestEngineError):
    code = "invalid_transition"
    status_code = 409


# --- precondition ---


class NotEligible(QuestEngineError):
    code = "not_eligible"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Quest is still open; winners can be computed once it closes"


# --- storage ---


class StorageError(QuestEngineError):
    code = "storage_error"
    status_code = 500
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Storage failure"


# Rejection reasons reported by the quest registry, mapped to their errors.
REJECTION_ERRORS: dict[str, type[QuestEngineError]] = {
    QuestNotFound.code: QuestNotFound,
    NotActive.code: NotActive,
    Expired.code: Expired,
    CapacityReached.code: CapacityReached,
}


def error_for_reason(reason: str) -> QuestEngineError:
    """Build the error instance for a registry rejection reason."""
    return REJECTION_ERRORS[reason]()
