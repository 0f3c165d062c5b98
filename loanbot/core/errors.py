# loanbot/core/errors.py
from typing import Optional


class LoanBotError(Exception):
    """Base class for every error raised inside the service."""


class LoanApiError(LoanBotError):
    """Raised by the remote loan API client."""


class BackendUnavailable(LoanApiError):
    """
    Network failure, timeout or non-2xx answer from the loan backend.
    `detail` carries the backend's own message when it sent one.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class BorrowerNotFound(LoanApiError):
    def __init__(self, phone_number: str):
        super().__init__(f"no borrower registered for {phone_number}")
        self.phone_number = phone_number


class ProductNotFound(LoanApiError):
    def __init__(self, product_id: str):
        super().__init__(f"product {product_id} not found in provider catalogue")
        self.product_id = product_id


class InputValidationError(LoanBotError):
    """User supplied a malformed phone number or amount."""


class SessionExpired(LoanBotError):
    """An action needing a borrower arrived for a chat with no borrower."""


class InvalidCallbackPayload(LoanBotError):
    """Button payload that does not decode to a known action."""


class MissingBotToken(LoanBotError):
    """TELEGRAM_BOT_TOKEN is required to start the bot."""


class ChatTransportError(LoanBotError):
    """Telegram Bot API call failed."""
