from uuid import UUID
from decimal import Decimal
from typing import List, Optional
import logging

# Setup Logger
logger = logging.getLogger(__name__)

from vsend.exceptions import (
    AccountNotActiveError,
    AccountNotFoundError,
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidPhoneNumberError,
    RecipientNotFoundError,
    SelfTransferNotAllowedError,
    StoreUnavailableError,
)
from vsend.models import (
    Account,
    AccountStatus,
    ReceiptType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from vsend.services.authorization import AuthorizationGate
from vsend.services.directory import UserDirectory
from vsend.services.limits import LimitPolicy
from vsend.services.receipts import CounterpartyInfo, ReceiptRecorder
from vsend.services.store import LedgerStore
from vsend.utils.amounts import parse_amount
from vsend.utils.phone import normalize_phone
from vsend.utils.references import generate_reference

CREDIT_KINDS = (TransactionType.CREDIT, TransactionType.TOPUP)
DEBIT_KINDS = (TransactionType.DEBIT, TransactionType.WITHDRAWAL)

class LedgerService:
    def __init__(
        self,
        store: LedgerStore,
        directory: UserDirectory,
        gate: AuthorizationGate,
        limits: LimitPolicy,
        receipts: ReceiptRecorder,
    ):
        self.store = store
        self.directory = directory
        self.gate = gate
        self.limits = limits
        self.receipts = receipts

    async def get_account(self, account_id: UUID) -> Account:
        """
        Retrieves an account by id.
        Raises AccountNotFoundError if the account does not exist.
        """
        account = await self.store.get_account(account_id)
        if not account:
            logger.warning(f"Account lookup failed: {account_id}")
            raise AccountNotFoundError()
        return account

    async def get_account_for_user(self, user_id: UUID) -> Account:
        account = await self.store.get_account_by_owner(user_id)
        if not account:
            raise AccountNotFoundError()
        return account

    async def get_account_balance(self, account_id: UUID) -> Decimal:
        account = await self.get_account(account_id)
        return account.balance

    async def _owned_account(self, account_id: UUID, user_id: UUID) -> Account:
        account = await self.get_account(account_id)
        # Someone else's account is reported as missing
        if account.owner_id != user_id:
            logger.warning(f"User {user_id} tried to move funds from account {account_id} they do not own")
            raise AccountNotFoundError()
        return account

    @staticmethod
    def _ensure_active(account: Account) -> None:
        if account.status != AccountStatus.ACTIVE:
            logger.info(f"Operation refused, account {account.id} is {account.status.value}")
            raise AccountNotActiveError()

    async def _owner_info(self, account: Account) -> CounterpartyInfo:
        # Called after the ledger write has committed; must not raise
        try:
            owner = await self.directory.get_user(account.owner_id)
        except StoreUnavailableError:
            logger.warning(f"Owner lookup for receipt failed on account {account.id}", exc_info=True)
            owner = None
        if owner is None:
            return CounterpartyInfo(sender_name="", sender_phone="")
        return CounterpartyInfo(sender_name=owner.full_name, sender_phone=owner.phone_number)

    async def credit(
        self,
        account_id: UUID,
        amount,
        description: str,
        kind: TransactionType = TransactionType.CREDIT,
        reference: Optional[str] = None,
        metadata: Optional[dict] = None,
        allow_inactive: bool = False,
    ) -> Transaction:
        """
        Adds funds to an account. Not PIN gated: the caller must already have
        established trust, e.g. a payment verified with the gateway.
        allow_inactive is for refunds, which must land whatever the account status.
        """
        if kind not in CREDIT_KINDS:
            raise ValueError(f"{kind} is not a credit type")
        amount = parse_amount(amount)
        account = await self.get_account(account_id)
        if not allow_inactive:
            self._ensure_active(account)

        reference = reference or generate_reference("TXN")
        transaction, balance = await self.store.post_entry(
            account, kind, amount, description, reference, metadata=metadata
        )
        logger.info(f"Credit successful: {amount} {account.currency} to {account.id} (TX: {transaction.id})")

        await self.receipts.record(transaction, await self._owner_info(account), balance)
        return transaction

    async def debit(
        self,
        account_id: UUID,
        amount,
        description: str,
        *,
        user_id: UUID,
        pin: str,
        kind: TransactionType = TransactionType.DEBIT,
        reference: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        """
        Removes funds from the caller's own account after PIN, sufficiency
        and limit checks.
        """
        if kind not in DEBIT_KINDS:
            raise ValueError(f"{kind} is not a debit type")
        await self.gate.authorize(user_id, pin)
        amount = parse_amount(amount)
        account = await self._owned_account(account_id, user_id)
        self._ensure_active(account)

        if account.balance < amount:
            logger.info(f"Debit rejected on {account.id}: balance {account.balance} < {amount}")
            raise InsufficientFundsError()
        await self.limits.check_limit(account, amount)

        reference = reference or generate_reference("TXN")
        posted = await self.store.post_entry(
            account, kind, -amount, description, reference, metadata=metadata
        )
        if posted is None:
            # Balance moved underneath us since the read above
            logger.info(f"Debit rejected on {account.id}: concurrent update left insufficient funds")
            raise InsufficientFundsError()
        transaction, balance = posted
        logger.info(f"Debit successful: {amount} {account.currency} from {account.id} (TX: {transaction.id})")

        await self.receipts.record(transaction, await self._owner_info(account), balance)
        return transaction

    async def transfer(
        self,
        from_account_id: UUID,
        to_phone_number: str,
        amount,
        description: str,
        *,
        user_id: UUID,
        pin: str,
        receipt_type: ReceiptType = ReceiptType.SEND,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        """
        Sends funds to the account owned by the user registered on
        to_phone_number. Both legs share one reference and are committed in
        a single database transaction. Returns the sender's transfer_out row.
        """
        await self.gate.authorize(user_id, pin)
        amount = parse_amount(amount)
        sender = await self._owned_account(from_account_id, user_id)
        self._ensure_active(sender)

        try:
            phone = normalize_phone(to_phone_number)
        except InvalidPhoneNumberError:
            raise RecipientNotFoundError()
        recipient_user = await self.directory.get_user_by_phone(phone)
        if recipient_user is None or not recipient_user.is_active:
            logger.info(f"Transfer rejected: no active user for {phone}")
            raise RecipientNotFoundError()
        if recipient_user.id == sender.owner_id:
            raise SelfTransferNotAllowedError()

        recipient = await self.store.get_account_by_owner(recipient_user.id)
        if recipient is None:
            raise RecipientNotFoundError()
        self._ensure_active(recipient)
        if sender.currency != recipient.currency:
            raise CurrencyMismatchError()

        if sender.balance < amount:
            logger.info(f"Transfer rejected on {sender.id}: balance {sender.balance} < {amount}")
            raise InsufficientFundsError()
        await self.limits.check_limit(sender, amount)

        sender_user = await self.directory.get_user(user_id)
        sender_phone = sender_user.phone_number if sender_user else None
        reference = generate_reference("TRF")
        posted = await self.store.post_transfer(
            sender,
            recipient,
            amount,
            out_description=f"Transfer to {phone}: {description}",
            in_description=f"Transfer from {sender_phone or 'sender'}: {description}",
            reference=reference,
            sender_phone=sender_phone,
            recipient_phone=phone,
            metadata=metadata,
        )
        if posted is None:
            logger.info(f"Transfer rejected on {sender.id}: concurrent update left insufficient funds")
            raise InsufficientFundsError()
        out_leg, in_leg, balance = posted
        logger.info(f"Transfer successful: {amount} {sender.currency} from {sender.id} to {recipient.id} (REF: {reference})")

        counterparty = CounterpartyInfo(
            sender_name=sender_user.full_name if sender_user else "",
            sender_phone=sender_phone or "",
            recipient_name=recipient_user.full_name,
            recipient_phone=recipient_user.phone_number,
        )
        await self.receipts.record(out_leg, counterparty, balance, receipt_type=receipt_type)
        return out_leg

    async def list_transactions(
        self,
        account_id: UUID,
        txn_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        """
        Returns the account's transactions, newest first.
        """
        await self.get_account(account_id)
        transactions = await self.store.list_transactions(
            account_id, txn_type=txn_type, status=status, limit=limit, offset=offset
        )
        logger.debug(f"Retrieved {len(transactions)} transactions for {account_id}")
        return transactions

    async def get_transfer_legs(self, reference: str) -> List[Transaction]:
        """
        Both rows of a transfer. Anything other than one transfer_out plus one
        transfer_in means the pair needs reconciliation.
        """
        legs = await self.store.list_transactions_by_reference(reference)
        return [
            leg for leg in legs
            if leg.type in (TransactionType.TRANSFER_OUT, TransactionType.TRANSFER_IN)
        ]
