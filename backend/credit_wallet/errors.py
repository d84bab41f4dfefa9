"""
Credit Wallet Errors

Every failure the wallet reports to a caller is a WalletError subclass.
The API layer renders them with to_dict() and the attached status code.
"""

from typing import Any, Dict, Optional

from .config import ERROR_MESSAGES


class WalletError(Exception):
    """Base class for wallet failures reported to the caller."""

    status_code = 400
    message_key: Optional[str] = None

    def __init__(self, message: Optional[str] = None, **extra: Any):
        if message is None and self.message_key:
            message = ERROR_MESSAGES[self.message_key]
        self.message = message or self.__class__.__name__
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {"error": self.message, **self.extra}


class ValidationError(WalletError):
    """Malformed input: missing token, bad amount, bad package, etc."""
    status_code = 400


class InvalidEmailFormat(ValidationError):
    message_key = "INVALID_EMAIL"


class InsufficientCredits(WalletError):
    """Deduction larger than the current balance. Carries the balance."""

    status_code = 402
    message_key = "INSUFFICIENT_CREDITS"

    def __init__(self, balance: int, message: Optional[str] = None):
        self.balance = balance
        super().__init__(message, balance=balance)


class CodeNotFound(WalletError):
    status_code = 404
    message_key = "CODE_NOT_FOUND"


class CodeAlreadyUsed(WalletError):
    status_code = 400
    message_key = "CODE_ALREADY_USED"


class EmailMismatch(WalletError):
    status_code = 403
    message_key = "EMAIL_MISMATCH"


class DuplicateCode(WalletError):
    status_code = 400
    message_key = "DUPLICATE_CODE"


class CreditGrantFailed(WalletError):
    """The code (or payment) gate was won but the ledger credit failed."""
    status_code = 500
    message_key = "CREDIT_GRANT_FAILED"


class PaymentNotConfigured(WalletError):
    status_code = 500
    message_key = "PAYMENT_NOT_CONFIGURED"


class PaymentNotCompleted(WalletError):
    status_code = 402
    message_key = "PAYMENT_NOT_COMPLETED"


class PaymentProviderError(WalletError):
    status_code = 502
    message_key = "PAYMENT_PROVIDER_ERROR"
