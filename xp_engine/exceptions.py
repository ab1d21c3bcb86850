"""
Standardized exception hierarchy for xp-engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class RewardEngineError(Exception):
    """
    Base exception for all xp-engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise RewardEngineError(
            message="Failed to append ledger entry",
            user_id="client@example.com",
            operation="award",
            context={"activity": "page_view"}
        )
    """

    # Subclasses flip this when a caller may safely repeat the whole operation
    retryable: bool = False
    log_level: int = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(
                self.log_level,
                f"{self.__class__.__name__}: {self.message}",
                extra=log_data,
                exc_info=self.cause
            )
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(RewardEngineError):
    """
    Raised when caller input fails validation

    Examples:
    - Unknown activity kind
    - Non-positive redemption amount
    - Negative order total

    Example:
        raise ValidationError(
            message="Order total must be positive",
            field="order_total",
            value=-5,
            user_id="client@example.com"
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        merged_context = {"field": field, "value": value}
        merged_context.update(context or {})
        super().__init__(
            message=message,
            user_message=user_message or (f"Invalid {field}: {message}" if field else message),
            context=merged_context,
            **kwargs
        )


class RejectionReason(str, Enum):
    """Why a redemption request was refused"""
    INVALID_AMOUNT = "invalid_amount"
    BELOW_MINIMUM = "below_minimum"
    EXCEEDS_BALANCE = "exceeds_balance"
    EXCEEDS_ORDER_CAP = "exceeds_order_cap"


class RedemptionRejectedError(ValidationError):
    """A redemption request broke one of the redemption rules"""

    _USER_MESSAGES = {
        RejectionReason.INVALID_AMOUNT: "Please choose a positive amount of XP to redeem.",
        RejectionReason.BELOW_MINIMUM: "You need to redeem a little more XP to unlock a discount.",
        RejectionReason.EXCEEDS_BALANCE: "You don't have enough XP for that discount yet.",
        RejectionReason.EXCEEDS_ORDER_CAP: "That discount is larger than allowed for this order.",
    }

    def __init__(
        self,
        message: str,
        reason: RejectionReason,
        value: Optional[Any] = None,
        limit: Optional[int] = None,
        **kwargs
    ):
        self.reason = reason
        self.limit = limit
        super().__init__(
            message=message,
            field="xp_to_redeem",
            value=value,
            user_message=self._USER_MESSAGES[reason],
            context={"reason": reason.value, "limit": limit},
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        data["limit"] = self.limit
        return data


class StreakClockSkewError(ValidationError):
    """Activity date is earlier than the last recorded active date"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            field="today",
            user_message="Activity date is earlier than the last recorded activity.",
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(RewardEngineError):
    """
    Base class for database-related errors
    """
    pass


class StorageError(DatabaseError):
    """Durable store unavailable; nothing was written"""

    retryable = True

    def __init__(self, message: str = "Reward store unavailable", **kwargs):
        super().__init__(
            message=message,
            user_message="Your points are being saved. Please check back in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your points. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested database record does not exist"""

    log_level = logging.INFO

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class ConflictError(DatabaseError):
    """Profile changed between read and write (optimistic version mismatch)"""

    retryable = True
    log_level = logging.INFO

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        **kwargs
    ):
        self.expected_version = expected_version
        super().__init__(
            message=message,
            user_message="Your points were updated at the same time elsewhere. Please try again.",
            context={"expected_version": expected_version},
            **kwargs
        )


class DuplicateEventError(DatabaseError):
    """
    Idempotency key already processed

    Carries whatever was stored for the first event (an AwardResult or a
    redemption result) so callers can replay it.
    """

    log_level = logging.INFO

    def __init__(
        self,
        message: str,
        idempotency_key: Optional[str] = None,
        original: Optional[Any] = None,
        **kwargs
    ):
        self.idempotency_key = idempotency_key
        self.original = original
        super().__init__(
            message=message,
            user_message="This event was already processed.",
            context={"idempotency_key": idempotency_key},
            **kwargs
        )


# ==========================================
# Achievement Errors
# ==========================================

class AchievementGrantError(RewardEngineError):
    """
    Achievement evaluation stopped partway

    `granted` holds the AchievementDefinitions already committed before the
    failure; they stay granted.
    """

    def __init__(
        self,
        message: str,
        granted: Optional[list] = None,
        **kwargs
    ):
        self.granted = list(granted or [])
        super().__init__(
            message=message,
            user_message="Some achievements could not be checked yet. They will be retried.",
            context={"granted": [a.slug for a in self.granted]},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(RewardEngineError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> RewardEngineError:
    """
    Wrap external exceptions (psycopg, psycopg_pool) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate RewardEngineError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="commit_award", user_id=user_id)
    """
    import psycopg
    import psycopg_pool

    if isinstance(error, RewardEngineError):
        return error

    if isinstance(error, (psycopg.OperationalError, psycopg_pool.PoolTimeout)):
        return StorageError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.errors.UniqueViolation):
        return DuplicateEventError(
            message=f"Duplicate row rejected: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )

    # Generic fallback
    return RewardEngineError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
