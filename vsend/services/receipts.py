import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from vsend.exceptions import DuplicateReceiptError
from vsend.models import Receipt, ReceiptStatus, ReceiptType, Transaction, TransactionType
from vsend.services.store import LedgerStore
from vsend.utils.references import generate_receipt_number

logger = logging.getLogger(__name__)

RECEIPT_NUMBER_ATTEMPTS = 3

RECEIPT_TYPES = {
    TransactionType.TRANSFER_OUT: ReceiptType.SEND,
    TransactionType.TRANSFER_IN: ReceiptType.RECEIVE,
    TransactionType.CREDIT: ReceiptType.TOPUP,
    TransactionType.TOPUP: ReceiptType.TOPUP,
    TransactionType.DEBIT: ReceiptType.PAYMENT,
    TransactionType.WITHDRAWAL: ReceiptType.WITHDRAWAL,
}


@dataclass
class CounterpartyInfo:
    sender_name: str
    sender_phone: str
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None


class ReceiptRecorder:
    """
    Writes display receipts after a ledger operation. The Transaction row is
    the record of truth, so recording never raises into the caller.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    async def record(
        self,
        transaction: Transaction,
        counterparty: CounterpartyInfo,
        balance_after: Decimal,
        receipt_type: Optional[ReceiptType] = None,
        payment_reference: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Receipt]:
        fields = dict(
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            receipt_type=receipt_type or RECEIPT_TYPES[transaction.type],
            amount=transaction.amount,
            currency=transaction.currency,
            sender_name=counterparty.sender_name,
            sender_phone=counterparty.sender_phone,
            recipient_name=counterparty.recipient_name,
            recipient_phone=counterparty.recipient_phone,
            description=transaction.description,
            status=ReceiptStatus.SUCCESS,
            payment_reference=payment_reference or transaction.reference,
            fee=Decimal("0.00"),
            balance_after=balance_after,
            metadata_json=metadata,
        )
        receipt = None
        try:
            for attempt in range(RECEIPT_NUMBER_ATTEMPTS):
                try:
                    receipt = await self.store.create_receipt(receipt_number=generate_receipt_number(), **fields)
                    break
                except DuplicateReceiptError:
                    logger.info(f"Receipt number collision for transaction {transaction.id}, attempt {attempt + 1}")
        except Exception:
            logger.warning(f"Receipt creation skipped for transaction {transaction.id}", exc_info=True)
            return None
        if receipt is None:
            logger.warning(f"Receipt creation skipped for transaction {transaction.id}: no free receipt number")
            return None
        logger.info(f"Receipt created: {receipt.receipt_number}")
        return receipt

    async def mark_failed(self, transaction_id: UUID) -> Optional[Receipt]:
        receipt = await self.store.get_receipt_by_transaction(transaction_id)
        if receipt is None:
            return None
        await self.store.update_receipt_status(receipt.id, ReceiptStatus.FAILED)
        receipt.status = ReceiptStatus.FAILED
        logger.info(f"Receipt {receipt.receipt_number} marked failed")
        return receipt

    async def get_by_transaction(self, transaction_id: UUID) -> Optional[Receipt]:
        return await self.store.get_receipt_by_transaction(transaction_id)

    async def get_by_number(self, receipt_number: str) -> Optional[Receipt]:
        return await self.store.get_receipt_by_number(receipt_number)

    async def list_for_phone(self, phone_number: str, limit: int = 50, offset: int = 0) -> List[Receipt]:
        return await self.store.list_receipts_for_phone(phone_number, limit=limit, offset=offset)
