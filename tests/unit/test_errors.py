"""Error taxonomy: stable codes and HTTP statuses."""

import pytest

from questboard.errors import (
    REJECTION_ERRORS,
    AlreadyCompleted,
    CapacityReached,
    Expired,
    InvalidTransition,
    NoWinnerRecord,
    NotActive,
    NotEligible,
    NotQuestCreator,
    QuestEngineError,
    QuestNotFound,
    StorageError,
    ValidationFailed,
    error_for_reason,
)


class TestErrorCodes:

    @pytest.mark.parametrize(
        ("error", "code", "status"),
        [
            (ValidationFailed, "validation_error", 422),
            (QuestNotFound, "not_found", 404),
            (NoWinnerRecord, "no_winner_record", 404),
            (NotQuestCreator, "forbidden", 403),
            (NotActive, "not_active", 409),
            (Expired, "expired", 409),
            (CapacityReached, "capacity_reached", 409),
            (AlreadyCompleted, "already_completed", 409),
            (InvalidTransition, "invalid_transition", 409),
            (NotEligible, "not_eligible", 409),
            (StorageError, "storage_error", 500),
        ],
    )
    def test_code_and_status(self, error, code, status):
        assert error.code == code
        assert error.status_code == status
        assert issubclass(error, QuestEngineError)

    def test_only_storage_errors_are_retryable(self):
        assert StorageError.retryable
        assert not AlreadyCompleted.retryable
        assert not CapacityReached.retryable

    def test_default_and_custom_messages(self):
        assert QuestNotFound().message == "Quest not found"
        assert QuestNotFound("Quest q1 not found").message == "Quest q1 not found"
        assert InvalidTransition().message == "Invalid transition"


class TestRejectionReasons:

    @pytest.mark.parametrize("reason", sorted(REJECTION_ERRORS))
    def test_reason_round_trips_to_code(self, reason):
        assert error_for_reason(reason).code == reason

    def test_unknown_reason(self):
        with pytest.raises(KeyError):
            error_for_reason("bogus")
