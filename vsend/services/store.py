import asyncio
import functools
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from vsend.exceptions import (
    AccountNotFoundError,
    DuplicateReceiptError,
    DuplicateTransactionError,
    StoreUnavailableError,
)
from vsend.models import (
    Account,
    AccountStatus,
    Receipt,
    ReceiptStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from vsend.utils.references import generate_account_number

logger = logging.getLogger(__name__)

# Errors worth another attempt on an idempotent read
TRANSIENT_ERRORS = (OperationalError, InterfaceError, asyncio.TimeoutError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def store_call(retry: bool = False):
    """
    Wraps a store coroutine so that every database failure surfaces as
    StoreUnavailableError. Reads marked retry=True get bounded retries with
    exponential backoff on transient errors; writes are attempted once.
    """
    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs):
            attempts = max(1, self.retry_attempts) if retry else 1
            for attempt in range(1, attempts + 1):
                try:
                    return await asyncio.wait_for(fn(self, *args, **kwargs), self.timeout)
                except TRANSIENT_ERRORS as exc:
                    if attempt == attempts:
                        logger.exception(f"Store call {fn.__name__} failed after {attempt} attempt(s)")
                        raise StoreUnavailableError() from exc
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning(f"Store call {fn.__name__} failed ({exc.__class__.__name__}), retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
                except SQLAlchemyError as exc:
                    logger.exception(f"Store call {fn.__name__} failed")
                    raise StoreUnavailableError() from exc
        return wrapper
    return decorator


class SqlStore:
    """
    Shared plumbing for the SQL-backed stores. Each call opens its own short
    session so one request never holds a connection across unrelated steps.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.timeout = timeout
        self.clock = clock


class LedgerStore(SqlStore):
    """
    Accounts, transactions and receipts. Balance changes only happen through
    post_entry / post_transfer, which apply a conditional atomic update and
    insert the matching Transaction row(s) in the same database transaction.
    """

    # Accounts

    @store_call(retry=True)
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        async with self.session_factory() as session:
            return await session.get(Account, account_id)

    @store_call(retry=True)
    async def get_account_by_owner(self, owner_id: UUID) -> Optional[Account]:
        async with self.session_factory() as session:
            query = (
                select(Account)
                .where(Account.owner_id == owner_id)
                .order_by(Account.is_default.desc(), Account.created_at)
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call(retry=True)
    async def get_account_by_phone(self, phone_number: str) -> Optional[Account]:
        async with self.session_factory() as session:
            query = (
                select(Account)
                .join(User, User.id == Account.owner_id)
                .where(User.phone_number == phone_number, User.is_active.is_(True))
                .order_by(Account.is_default.desc(), Account.created_at)
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call()
    async def create_account(
        self,
        owner_id: UUID,
        currency: str,
        daily_limit: Decimal,
        monthly_limit: Decimal,
    ) -> Account:
        async with self.session_factory() as session:
            async with session.begin():
                account = Account(
                    owner_id=owner_id,
                    account_number=generate_account_number(),
                    balance=Decimal("0.00"),
                    currency=currency,
                    status=AccountStatus.ACTIVE,
                    daily_limit=daily_limit,
                    monthly_limit=monthly_limit,
                    is_default=True,
                    version=0,
                    updated_at=self.clock(),
                )
                session.add(account)
            await session.refresh(account)
            return account

    @store_call()
    async def set_account_status(self, account_id: UUID, status: AccountStatus) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(status=status, updated_at=self.clock())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise AccountNotFoundError()

    async def _apply_delta(self, session, account_id: UUID, delta: Decimal, now: datetime) -> bool:
        # Single statement read-modify-write; refuses to take the balance below zero
        result = await session.execute(
            update(Account)
            .where(Account.id == account_id, Account.balance + delta >= 0)
            .values(balance=Account.balance + delta, version=Account.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _new_transaction(self, account: Account, txn_type: TransactionType, amount: Decimal,
                         description: str, reference: str, now: datetime,
                         counterparty_phone: Optional[str] = None, metadata: Optional[dict] = None) -> Transaction:
        return Transaction(
            account_id=account.id,
            type=txn_type,
            amount=amount,
            currency=account.currency,
            description=description or "",
            reference=reference,
            status=TransactionStatus.COMPLETED,
            counterparty_phone=counterparty_phone,
            metadata_json=metadata,
            created_at=now,
            completed_at=now,
        )

    async def _flush_new_rows(self, session, reference: str) -> None:
        try:
            await session.flush()
        except IntegrityError:
            # Raising inside session.begin() also undoes the balance update
            logger.info(f"Duplicate transaction rejected for reference {reference}")
            raise DuplicateTransactionError()

    @store_call()
    async def post_entry(
        self,
        account: Account,
        txn_type: TransactionType,
        delta: Decimal,
        description: str,
        reference: str,
        counterparty_phone: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Tuple[Transaction, Decimal]]:
        """
        Applies a signed balance delta and records one Transaction for it.
        Returns (transaction, balance_after), or None when a debit would
        overdraw the account, in which case nothing is written.
        """
        now = self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                if not await self._apply_delta(session, account.id, delta, now):
                    return None
                transaction = self._new_transaction(
                    account, txn_type, abs(delta), description, reference, now,
                    counterparty_phone=counterparty_phone, metadata=metadata,
                )
                session.add(transaction)
                await self._flush_new_rows(session, reference)
                balance = await session.scalar(select(Account.balance).where(Account.id == account.id))
            return transaction, balance

    @store_call()
    async def post_transfer(
        self,
        sender: Account,
        recipient: Account,
        amount: Decimal,
        out_description: str,
        in_description: str,
        reference: str,
        sender_phone: Optional[str] = None,
        recipient_phone: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Tuple[Transaction, Transaction, Decimal]]:
        """
        Moves funds between two accounts in one database transaction: both
        balances and both legs commit together or not at all. Returns
        (transfer_out, transfer_in, sender_balance_after), or None when the
        sender cannot cover the amount.
        """
        now = self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                if not await self._apply_delta(session, sender.id, -amount, now):
                    return None
                if not await self._apply_delta(session, recipient.id, amount, now):
                    # Rolls back the sender side as well
                    raise AccountNotFoundError()
                out_leg = self._new_transaction(
                    sender, TransactionType.TRANSFER_OUT, amount, out_description, reference, now,
                    counterparty_phone=recipient_phone, metadata=metadata,
                )
                in_leg = self._new_transaction(
                    recipient, TransactionType.TRANSFER_IN, amount, in_description, reference, now,
                    counterparty_phone=sender_phone, metadata=metadata,
                )
                session.add_all([out_leg, in_leg])
                await self._flush_new_rows(session, reference)
                balance = await session.scalar(select(Account.balance).where(Account.id == sender.id))
            return out_leg, in_leg, balance

    # Transactions

    @store_call(retry=True)
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        async with self.session_factory() as session:
            return await session.get(Transaction, transaction_id)

    @store_call(retry=True)
    async def find_transaction(self, reference: str, txn_type: TransactionType) -> Optional[Transaction]:
        async with self.session_factory() as session:
            query = (
                select(Transaction)
                .where(Transaction.reference == reference, Transaction.type == txn_type)
                .order_by(Transaction.created_at)
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call(retry=True)
    async def list_transactions(
        self,
        account_id: UUID,
        txn_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Transaction]:
        async with self.session_factory() as session:
            query = select(Transaction).where(Transaction.account_id == account_id)
            if txn_type is not None:
                query = query.where(Transaction.type == txn_type)
            if status is not None:
                query = query.where(Transaction.status == status)
            if since is not None:
                query = query.where(Transaction.created_at >= since)
            query = query.order_by(Transaction.created_at.desc()).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    @store_call(retry=True)
    async def list_transactions_by_reference(self, reference: str) -> List[Transaction]:
        async with self.session_factory() as session:
            query = select(Transaction).where(Transaction.reference == reference).order_by(Transaction.created_at)
            result = await session.execute(query)
            return list(result.scalars().all())

    @store_call(retry=True)
    async def sum_amounts(
        self,
        account_id: UUID,
        types: Iterable[TransactionType],
        since: datetime,
        statuses: Iterable[TransactionStatus] = (TransactionStatus.PENDING, TransactionStatus.COMPLETED),
    ) -> Decimal:
        async with self.session_factory() as session:
            query = select(func.sum(Transaction.amount)).where(
                Transaction.account_id == account_id,
                Transaction.type.in_(list(types)),
                Transaction.status.in_(list(statuses)),
                Transaction.created_at >= since,
            )
            result = await session.execute(query)
            return result.scalar() or Decimal(0)

    @store_call()
    async def update_transaction_status(self, transaction_id: UUID, status: TransactionStatus) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Transaction)
                    .where(Transaction.id == transaction_id)
                    .values(status=status)
                    .execution_options(synchronize_session=False)
                )

    @store_call(retry=True)
    async def find_unpaired_transfer_references(self) -> List[str]:
        """
        References that have only one visible transfer leg. The ledger never
        writes these itself; they point at data needing manual reconciliation.
        """
        async with self.session_factory() as session:
            query = (
                select(Transaction.reference)
                .where(Transaction.type.in_([TransactionType.TRANSFER_OUT, TransactionType.TRANSFER_IN]))
                .group_by(Transaction.reference)
                .having(func.count(func.distinct(Transaction.type)) < 2)
                .order_by(Transaction.reference)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # Receipts

    @store_call()
    async def create_receipt(self, **fields) -> Receipt:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    receipt = Receipt(**fields)
                    session.add(receipt)
            except IntegrityError:
                logger.info(f"Receipt number {fields.get('receipt_number')} already taken")
                raise DuplicateReceiptError()
            await session.refresh(receipt)
            return receipt

    @store_call(retry=True)
    async def get_receipt_by_transaction(self, transaction_id: UUID) -> Optional[Receipt]:
        async with self.session_factory() as session:
            query = select(Receipt).where(Receipt.transaction_id == transaction_id).limit(1)
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call(retry=True)
    async def get_receipt_by_number(self, receipt_number: str) -> Optional[Receipt]:
        async with self.session_factory() as session:
            query = select(Receipt).where(Receipt.receipt_number == receipt_number)
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call(retry=True)
    async def list_receipts_for_phone(self, phone_number: str, limit: int = 50, offset: int = 0) -> List[Receipt]:
        async with self.session_factory() as session:
            query = (
                select(Receipt)
                .where(or_(Receipt.sender_phone == phone_number, Receipt.recipient_phone == phone_number))
                .order_by(Receipt.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    @store_call()
    async def update_receipt_status(self, receipt_id: UUID, status: ReceiptStatus) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Receipt)
                    .where(Receipt.id == receipt_id)
                    .values(status=status)
                    .execution_options(synchronize_session=False)
                )
