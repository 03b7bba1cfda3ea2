"""
Store exceptions and their HTTP mapping.

Domain errors carry a user-safe message. Internal details go to the logs,
never to the chat or the HTTP client.
"""
from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for every error the core raises on purpose."""

    user_message = "Something went wrong. Please try again later."

    def __init__(self, message: str = "", user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(StoreError):
    """Bad user input. Recovered locally: re-prompt, state unchanged."""

    user_message = "Invalid input."


class InsufficientBalance(ValidationError):
    def __init__(self, balance: int, price: int):
        super().__init__(f"Insufficient balance: have={balance}, need={price}")
        self.balance = balance
        self.price = price

    @property
    def shortfall(self) -> int:
        return self.price - self.balance


class GatewayError(StoreError):
    """Payment API failure. Surfaced as retry-later, wizard state cleared."""

    user_message = "Payment system is unavailable right now. Please try again later."


class NotFoundError(StoreError):
    """Stale reference to a deleted or sold-out product (or unknown user)."""

    user_message = "Product is not available."


class PaymentRefunded(NotFoundError):
    """QRIS paid but the product was gone: the paid amount went to the balance."""

    def __init__(self, deposit_id: str, amount: int, balance: int):
        super().__init__(f"Deposit {deposit_id} refunded to balance: amount={amount}")
        self.deposit_id = deposit_id
        self.amount = amount
        self.balance = balance


class ConcurrencyConflict(StoreError):
    """A settlement with the same key is already running."""

    user_message = "Your payment is already being processed. Please wait."

    def __init__(self, key: str):
        super().__init__(f"Settlement already in progress: {key}")
        self.key = key


class AlreadyProcessed(StoreError):
    """The deposit is already recorded in the processed-deposit ledger."""

    user_message = "This payment has already been processed."

    def __init__(self, deposit_id: str):
        super().__init__(f"Deposit already processed: {deposit_id}")
        self.deposit_id = deposit_id


class PersistenceError(StoreError):
    """A snapshot write failed. The mutation must not be assumed committed."""

    user_message = "Could not save your transaction. Please contact the owner."


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        if reason:
            logger.warning(f"Not found: {resource} - {reason}")
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Resource not found",
        )

    @staticmethod
    def conflict(detail: str) -> HTTPException:
        logger.info(f"Conflict: {detail}")
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=True
            )
        else:
            logger.error("Internal server error occurred", exc_info=True)

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )

    @staticmethod
    def from_store_error(error: StoreError) -> HTTPException:
        if isinstance(error, NotFoundError):
            return BusinessError.not_found(reason=str(error))
        if isinstance(error, (ConcurrencyConflict, AlreadyProcessed)):
            return BusinessError.conflict(error.user_message)
        return BusinessError.server_error(error)
