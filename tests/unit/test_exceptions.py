"""Unit tests for custom exception hierarchy"""
from datetime import datetime

import psycopg
import psycopg_pool
import pytest

from xp_engine.exceptions import (
    ConfigurationError,
    ConflictError,
    DuplicateEventError,
    QueryError,
    RecordNotFoundError,
    RedemptionRejectedError,
    RejectionReason,
    RewardEngineError,
    StorageError,
    StreakClockSkewError,
    ValidationError,
    wrap_external_exception,
)


class TestRewardEngineError:
    """Test base exception class"""

    def test_basic_exception(self):
        error = RewardEngineError("Test error")
        assert error.message == "Test error"
        assert error.user_message == "An error occurred. Please try again."
        assert error.request_id is not None
        assert isinstance(error.timestamp, datetime)
        assert error.retryable is False

    def test_exception_with_context(self):
        error = RewardEngineError(
            message="Ledger append failed",
            user_id="client@example.com",
            operation="award",
            context={"activity": "page_view"},
            user_message="Could not save your points"
        )
        assert error.user_id == "client@example.com"
        assert error.operation == "award"
        assert error.context["activity"] == "page_view"
        assert error.user_message == "Could not save your points"

    def test_to_dict(self):
        error_dict = RewardEngineError("Test error").to_dict()
        assert error_dict["error"] == "RewardEngineError"
        assert error_dict["message"] == "Test error"
        assert error_dict["retryable"] is False
        assert "request_id" in error_dict
        assert "timestamp" in error_dict


class TestValidationErrors:

    def test_validation_error_field(self):
        error = ValidationError("must be positive", field="order_total", value=-5)
        assert error.field == "order_total"
        assert error.value == -5
        assert error.context["field"] == "order_total"
        assert "order_total" in error.user_message

    def test_redemption_rejected_serializes_reason(self):
        error = RedemptionRejectedError(
            "Exceeds order cap",
            reason=RejectionReason.EXCEEDS_ORDER_CAP,
            value=600,
            limit=500,
        )
        data = error.to_dict()
        assert isinstance(error, ValidationError)
        assert data["reason"] == "exceeds_order_cap"
        assert data["limit"] == 500
        assert error.field == "xp_to_redeem"

    def test_clock_skew_is_validation_error(self):
        error = StreakClockSkewError("today before last_active")
        assert isinstance(error, ValidationError)
        assert error.field == "today"


class TestDatabaseErrors:

    def test_transient_errors_are_retryable(self):
        assert StorageError().retryable is True
        assert ConflictError("moved", expected_version=3).retryable is True
        assert ConflictError("moved", expected_version=3).expected_version == 3

    def test_permanent_errors_are_not_retryable(self):
        assert QueryError("bad sql").retryable is False
        assert DuplicateEventError("seen").retryable is False
        assert RecordNotFoundError("missing", record_type="Profile").retryable is False

    def test_duplicate_event_keeps_original(self):
        error = DuplicateEventError("seen", idempotency_key="cs_1", original={"new_balance": 10})
        assert error.idempotency_key == "cs_1"
        assert error.original == {"new_balance": 10}

    def test_record_not_found_user_message(self):
        error = RecordNotFoundError("missing", record_type="Profile", record_id="x")
        assert error.user_message == "Profile not found."

    def test_configuration_error(self):
        error = ConfigurationError("bad", config_key="REWARD_STORE")
        assert error.config_key == "REWARD_STORE"


class TestWrapExternalException:

    def test_passes_through_own_errors(self):
        original = StorageError()
        assert wrap_external_exception(original, operation="commit") is original

    def test_operational_error_becomes_storage_error(self):
        wrapped = wrap_external_exception(psycopg.OperationalError("down"), operation="commit")
        assert isinstance(wrapped, StorageError)
        assert wrapped.operation == "commit"

    def test_pool_timeout_becomes_storage_error(self):
        wrapped = wrap_external_exception(psycopg_pool.PoolTimeout("timeout"), operation="commit")
        assert isinstance(wrapped, StorageError)

    def test_unique_violation_becomes_duplicate_event(self):
        wrapped = wrap_external_exception(psycopg.errors.UniqueViolation("dup"), operation="commit")
        assert isinstance(wrapped, DuplicateEventError)

    def test_data_error_becomes_query_error(self):
        wrapped = wrap_external_exception(psycopg.DataError("bad"), operation="commit")
        assert isinstance(wrapped, QueryError)

    def test_generic_fallback(self):
        cause = ValueError("Bad value")
        wrapped = wrap_external_exception(cause, operation="award", user_id="client@example.com")
        assert type(wrapped) is RewardEngineError
        assert wrapped.cause is cause
        assert "award failed" in wrapped.message
