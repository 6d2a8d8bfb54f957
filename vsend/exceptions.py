from fastapi import HTTPException

class LedgerError(HTTPException):
    code = "LEDGER_ERROR"

    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

# Caller supplied something malformed. Surfaced as-is, never retried.
class UserInputError(LedgerError):
    pass

# Request was well-formed but the wallet rules forbid it.
class BusinessRuleViolation(LedgerError):
    pass

# The ledger store could not be reached or failed.
class StoreFault(LedgerError):
    pass

class InvalidAmountError(UserInputError):
    code = "INVALID_AMOUNT"

    def __init__(self, detail: str = "Amount must be positive with at most 2 decimal places"):
        super().__init__(status_code=400, detail=detail)

class PinValidationError(UserInputError):
    code = "PIN_VALIDATION"

    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class InvalidPhoneNumberError(UserInputError):
    code = "INVALID_PHONE"

    def __init__(self):
        super().__init__(
            status_code=400,
            detail="Please enter a valid Ghanaian phone number (e.g., 0201234567 or 0551234567)"
        )

class InvalidPinError(UserInputError):
    code = "INVALID_PIN"

    def __init__(self):
        super().__init__(status_code=403, detail="Invalid PIN")

class PinNotSetUpError(BusinessRuleViolation):
    code = "PIN_NOT_SET_UP"

    def __init__(self):
        super().__init__(status_code=409, detail="PIN not set up. Please set up your PIN first.")

class AccountNotFoundError(BusinessRuleViolation):
    code = "ACCOUNT_NOT_FOUND"

    def __init__(self):
        super().__init__(status_code=404, detail="Account not found")

class UserNotFoundError(BusinessRuleViolation):
    code = "USER_NOT_FOUND"

    def __init__(self):
        super().__init__(status_code=404, detail="User not found")

class PhoneAlreadyRegisteredError(BusinessRuleViolation):
    code = "PHONE_ALREADY_REGISTERED"

    def __init__(self):
        super().__init__(status_code=409, detail="Phone number already registered")

class AccountNotActiveError(BusinessRuleViolation):
    code = "ACCOUNT_NOT_ACTIVE"

    def __init__(self):
        super().__init__(status_code=409, detail="Account is not active")

class InsufficientFundsError(BusinessRuleViolation):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self):
        super().__init__(status_code=400, detail="Insufficient funds for transaction")

class RecipientNotFoundError(BusinessRuleViolation):
    code = "RECIPIENT_NOT_FOUND"

    def __init__(self):
        super().__init__(
            status_code=404,
            detail="Recipient not found. They must be registered with V-Send to receive payments."
        )

class SelfTransferNotAllowedError(BusinessRuleViolation):
    code = "SELF_TRANSFER"

    def __init__(self):
        super().__init__(status_code=400, detail="You cannot send money to yourself")

class CurrencyMismatchError(BusinessRuleViolation):
    code = "CURRENCY_MISMATCH"

    def __init__(self):
        super().__init__(status_code=400, detail="Currency mismatch between accounts")

class DailyLimitExceededError(BusinessRuleViolation):
    code = "DAILY_LIMIT_EXCEEDED"

    def __init__(self):
        super().__init__(status_code=400, detail="Daily transaction limit exceeded")

class MonthlyLimitExceededError(BusinessRuleViolation):
    code = "MONTHLY_LIMIT_EXCEEDED"

    def __init__(self):
        super().__init__(status_code=400, detail="Monthly transaction limit exceeded")

class PaymentVerificationError(BusinessRuleViolation):
    code = "PAYMENT_NOT_VERIFIED"

    def __init__(self, detail: str = "Payment verification failed"):
        super().__init__(status_code=400, detail=detail)

class InvalidWebhookSignatureError(BusinessRuleViolation):
    code = "INVALID_SIGNATURE"

    def __init__(self):
        super().__init__(status_code=401, detail="Invalid webhook signature")

class StoreUnavailableError(StoreFault):
    code = "STORE_UNAVAILABLE"

    def __init__(self):
        super().__init__(status_code=503, detail="Service temporarily unavailable, please try again")

# The payment provider failed or rejected the request.
class GatewayFault(LedgerError):
    pass

class PaymentGatewayError(GatewayFault):
    code = "GATEWAY_ERROR"

    def __init__(self, detail: str = "Payment provider request failed"):
        super().__init__(status_code=502, detail=detail)

class DuplicateTransactionError(BusinessRuleViolation):
    code = "DUPLICATE_TRANSACTION"

    def __init__(self):
        super().__init__(status_code=409, detail="Duplicate transaction detected (idempotency)")

class ReceiptNotFoundError(BusinessRuleViolation):
    code = "RECEIPT_NOT_FOUND"

    def __init__(self):
        super().__init__(status_code=404, detail="Receipt not found")

class DuplicateReceiptError(BusinessRuleViolation):
    code = "DUPLICATE_RECEIPT"

    def __init__(self):
        super().__init__(status_code=409, detail="Receipt number already in use")
