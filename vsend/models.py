
import enum
import uuid
from decimal import Decimal
from sqlalchemy import (
    Boolean,
    Column,
    String,
    Enum,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    UniqueConstraint,
    Uuid,
    func
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()

# Amounts are 2dp currency values throughout the wallet
Money = Numeric(precision=20, scale=2)

class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"

class TransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    TOPUP = "topup"
    WITHDRAWAL = "withdrawal"

# Types counted against daily/monthly limits
DEBIT_LIKE_TYPES = (TransactionType.DEBIT, TransactionType.TRANSFER_OUT, TransactionType.WITHDRAWAL)

class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

class ReceiptType(str, enum.Enum):
    SEND = "send"
    RECEIVE = "receive"
    TOPUP = "topup"
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"

class ReceiptStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"

class User(Base):
    """
    A registered wallet user, identified by a normalized phone number.
    """
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), unique=True, index=True, nullable=False)
    first_name = Column(String, default="", nullable=False)
    last_name = Column(String, default="", nullable=False)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    accounts = relationship("Account", back_populates="owner")

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.phone_number

class Account(Base):
    """
    A wallet account holding a single-currency balance.
    The balance never goes below zero; mutations go through the ledger only.
    """
    __tablename__ = "accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), index=True, nullable=False)
    account_number = Column(String(20), unique=True, nullable=False)
    balance = Column(Money, default=Decimal("0.00"), nullable=False)
    currency = Column(String(3), default="GHS", nullable=False)
    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False)
    daily_limit = Column(Money, nullable=False)
    monthly_limit = Column(Money, nullable=False)
    is_default = Column(Boolean, default=True, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="accounts")

class Transaction(Base):
    """
    One row per balance mutation. A transfer writes a transfer_out row on the
    sender and a transfer_in row on the recipient sharing the same reference.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        # At most one row of each type per reference
        UniqueConstraint("reference", "type", name="uq_transactions_reference_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.id"), index=True, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(String, default="", nullable=False)
    reference = Column(String(64), index=True, nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    counterparty_phone = Column(String(20), nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

class PinCredential(Base):
    """
    Salted PIN hash for a user. Rotation deactivates the old row and adds a new one.
    """
    __tablename__ = "pin_credentials"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), index=True, nullable=False)
    hashed_pin = Column(String, nullable=False)
    salt = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class Receipt(Base):
    """
    Denormalized, display-only summary of a completed transaction.
    """
    __tablename__ = "receipts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), index=True, nullable=False)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False)
    receipt_number = Column(String(32), unique=True, index=True, nullable=False)
    receipt_type = Column(Enum(ReceiptType), nullable=False)
    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False)
    sender_name = Column(String, default="", nullable=False)
    sender_phone = Column(String(20), default="", nullable=False)
    recipient_name = Column(String, nullable=True)
    recipient_phone = Column(String(20), nullable=True)
    description = Column(String, default="", nullable=False)
    status = Column(Enum(ReceiptStatus), default=ReceiptStatus.SUCCESS, nullable=False)
    payment_reference = Column(String(64), nullable=True)
    fee = Column(Money, default=Decimal("0.00"), nullable=False)
    balance_after = Column(Money, nullable=False)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
