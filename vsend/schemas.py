from uuid import UUID
from decimal import Decimal
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from vsend.models import (
    AccountStatus,
    ReceiptStatus,
    ReceiptType,
    TransactionStatus,
    TransactionType,
)


class MoneyRequest(BaseModel):
    """
    Base for requests that move money. Amounts are major units with at most two decimals.
    """
    amount: Decimal = Field(..., gt=0)

    @field_validator('amount')
    def amount_must_be_valid(cls, v):
        if v <= 0:
            raise ValueError('Amount must be positive')
        if v.normalize().as_tuple().exponent < -2:
            raise ValueError('Amount must have at most 2 decimal places')
        return v

# User Schemas
class UserCreate(BaseModel):
    """
    Schema for onboarding a new wallet user.
    """
    phone_number: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None

class UserResponse(BaseModel):
    id: UUID
    phone_number: str
    first_name: str
    last_name: str
    full_name: str
    is_active: bool
    is_verified: bool

    class Config:
        from_attributes = True

class RecipientResponse(BaseModel):
    """
    What a sender is shown about a recipient before confirming a transfer.
    """
    id: UUID
    phone_number: str
    full_name: str
    is_active: bool
    is_verified: bool

    class Config:
        from_attributes = True

# Account Schemas
class AccountResponse(BaseModel):
    """
    Wallet account details including current balance.
    """
    id: UUID
    owner_id: UUID
    account_number: str
    balance: Decimal
    currency: str
    status: AccountStatus
    daily_limit: Decimal
    monthly_limit: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RegistrationResponse(BaseModel):
    user: UserResponse
    account: AccountResponse

# PIN Schemas
class PinSetupRequest(BaseModel):
    user_id: UUID
    pin: str
    confirm_pin: str

class PinChangeRequest(BaseModel):
    user_id: UUID
    old_pin: str
    new_pin: str
    confirm_pin: str

class PinStatusResponse(BaseModel):
    user_id: UUID
    is_pin_set: bool

# Money movement Schemas
class TransferCreate(MoneyRequest):
    user_id: UUID
    to_phone_number: str
    description: str = ""
    pin: str

class PaymentCreate(MoneyRequest):
    user_id: UUID
    merchant_phone: str
    description: str = ""
    pin: str

class TopUpCreate(MoneyRequest):
    user_id: UUID
    pin: str
    description: Optional[str] = None

class TopUpResponse(BaseModel):
    authorization_url: str
    reference: str

class WithdrawalCreate(MoneyRequest):
    user_id: UUID
    bank_code: str
    account_number: str
    account_name: Optional[str] = None
    description: Optional[str] = None
    pin: str

# Transaction Schemas
class TransactionResponse(BaseModel):
    """
    A single ledger row. Transfers show up as one transfer_out and one
    transfer_in row sharing the same reference.
    """
    id: UUID
    account_id: UUID
    type: TransactionType
    amount: Decimal
    currency: str
    description: str
    reference: str
    status: TransactionStatus
    counterparty_phone: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ReceiptResponse(BaseModel):
    id: UUID
    transaction_id: UUID
    receipt_number: str
    receipt_type: ReceiptType
    amount: Decimal
    currency: str
    sender_name: str
    sender_phone: str
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    description: str
    status: ReceiptStatus
    payment_reference: Optional[str] = None
    fee: Decimal
    balance_after: Decimal
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
