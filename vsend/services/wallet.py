import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from vsend.core.config import Settings
from vsend.exceptions import (
    AccountNotActiveError,
    CurrencyMismatchError,
    DuplicateTransactionError,
    PaymentGatewayError,
    PaymentVerificationError,
    RecipientNotFoundError,
    UserNotFoundError,
)
from vsend.models import (
    Account,
    AccountStatus,
    ReceiptType,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from vsend.services.authorization import AuthorizationGate
from vsend.services.directory import UserDirectory
from vsend.services.gateway import PaystackGateway
from vsend.services.ledger import LedgerService
from vsend.services.receipts import ReceiptRecorder
from vsend.utils.amounts import from_minor_units, parse_amount
from vsend.utils.phone import normalize_phone
from vsend.utils.references import generate_reference

logger = logging.getLogger(__name__)


class WalletService:
    """
    User-facing wallet flows built on the ledger: onboarding, sending money,
    merchant payments, gateway top-ups and bank withdrawals.
    """

    def __init__(
        self,
        ledger: LedgerService,
        directory: UserDirectory,
        gate: AuthorizationGate,
        receipts: ReceiptRecorder,
        gateway: PaystackGateway,
        settings: Settings,
    ):
        self.ledger = ledger
        self.directory = directory
        self.gate = gate
        self.receipts = receipts
        self.gateway = gateway
        self.settings = settings

    async def register(
        self,
        phone_number: str,
        first_name: str = "",
        last_name: str = "",
        email: Optional[str] = None,
    ) -> Tuple[User, Account]:
        phone = normalize_phone(phone_number)
        user = await self.directory.create_user(phone, first_name, last_name, email)
        account = await self.ensure_account(user.id)
        return user, account

    async def ensure_account(self, user_id: UUID) -> Account:
        """Returns the user's wallet account, creating it on first use."""
        account = await self.ledger.store.get_account_by_owner(user_id)
        if account is not None:
            return account
        if await self.directory.get_user(user_id) is None:
            raise UserNotFoundError()
        account = await self.ledger.store.create_account(
            owner_id=user_id,
            currency=self.settings.DEFAULT_CURRENCY,
            daily_limit=self.settings.DEFAULT_DAILY_LIMIT,
            monthly_limit=self.settings.DEFAULT_MONTHLY_LIMIT,
        )
        logger.info(f"Created account: {account.account_number} (ID: {account.id}) for user {user_id}")
        return account

    async def lookup_recipient(self, phone_number: str) -> User:
        phone = normalize_phone(phone_number)
        user = await self.directory.get_user_by_phone(phone)
        if user is None or not user.is_active:
            raise RecipientNotFoundError()
        return user

    async def send_money(self, user_id: UUID, to_phone_number: str, amount, description: str, pin: str) -> Transaction:
        account = await self.ledger.get_account_for_user(user_id)
        return await self.ledger.transfer(
            account.id, to_phone_number, amount, description, user_id=user_id, pin=pin
        )

    async def make_payment(self, user_id: UUID, merchant_phone: str, amount, description: str, pin: str) -> Transaction:
        account = await self.ledger.get_account_for_user(user_id)
        return await self.ledger.transfer(
            account.id,
            merchant_phone,
            amount,
            f"Payment: {description}",
            user_id=user_id,
            pin=pin,
            receipt_type=ReceiptType.PAYMENT,
        )

    async def initiate_top_up(self, user_id: UUID, amount, pin: str, description: Optional[str] = None) -> Dict[str, str]:
        """
        Starts a card/mobile-money checkout. The wallet is only credited once
        the gateway confirms the payment (complete_top_up).
        """
        await self.gate.authorize(user_id, pin)
        amount = parse_amount(amount)
        account = await self.ledger.get_account_for_user(user_id)
        if account.status != AccountStatus.ACTIVE:
            raise AccountNotActiveError()
        user = await self.directory.get_user(user_id)

        reference = generate_reference("TOPUP")
        data = await self.gateway.initialize_payment(
            email=user.email or f"{user.phone_number}@vsend.app",
            amount=amount,
            reference=reference,
            currency=account.currency,
            metadata={
                "user_id": str(user_id),
                "phone_number": user.phone_number,
                "description": description or "Wallet top-up",
            },
            callback_url=self.settings.PAYSTACK_CALLBACK_URL,
        )
        logger.info(f"Top-up initialized for user {user_id}: {amount} {account.currency} (REF: {reference})")
        return {"authorization_url": data["authorization_url"], "reference": data.get("reference", reference)}

    async def complete_top_up(self, reference: str) -> Transaction:
        """
        Verifies the payment with the gateway and credits the wallet once per
        reference. Safe to call from both the redirect callback and the webhook.
        """
        existing = await self.ledger.store.find_transaction(reference, TransactionType.TOPUP)
        if existing is not None:
            return existing

        data = await self.gateway.verify_payment(reference)
        if data.get("status") != "success":
            logger.info(f"Top-up {reference} not successful at gateway: {data.get('status')}")
            raise PaymentVerificationError()

        raw_user_id = (data.get("metadata") or {}).get("user_id")
        if not raw_user_id:
            raise PaymentVerificationError("User ID not found in payment metadata")
        try:
            user_id = UUID(str(raw_user_id))
        except ValueError:
            raise PaymentVerificationError("User ID not found in payment metadata")

        account = await self.ledger.get_account_for_user(user_id)
        if data.get("currency", account.currency) != account.currency:
            raise CurrencyMismatchError()

        if data.get("amount") is None:
            raise PaymentVerificationError("Amount not found in payment data")
        amount = from_minor_units(data["amount"])
        try:
            return await self.ledger.credit(
                account.id,
                amount,
                f"Wallet top-up via Paystack - {reference}",
                kind=TransactionType.TOPUP,
                reference=reference,
                metadata={"gateway": "paystack", "gateway_id": data.get("id")},
            )
        except DuplicateTransactionError:
            # Lost a race with a concurrent callback for the same payment
            return await self.ledger.store.find_transaction(reference, TransactionType.TOPUP)

    async def withdraw(
        self,
        user_id: UUID,
        amount,
        bank_code: str,
        account_number: str,
        pin: str,
        account_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Debits the wallet, then pays out through the gateway. If the gateway
        rejects the payout the debit is reversed with a compensating credit.
        """
        account = await self.ledger.get_account_for_user(user_id)
        reference = generate_reference("WITHDRAW")
        transaction = await self.ledger.debit(
            account.id,
            amount,
            f"Withdrawal to {account_number}",
            user_id=user_id,
            pin=pin,
            kind=TransactionType.WITHDRAWAL,
            reference=reference,
            metadata={"bank_code": bank_code, "account_number": account_number},
        )

        try:
            resolved = await self.gateway.resolve_account_number(account_number, bank_code)
            recipient = await self.gateway.create_transfer_recipient(
                name=account_name or resolved.get("account_name", ""),
                account_number=account_number,
                bank_code=bank_code,
                currency=transaction.currency,
            )
            await self.gateway.initiate_transfer(
                amount=transaction.amount,
                recipient_code=recipient["recipient_code"],
                reason=description or "Wallet withdrawal",
                reference=reference,
            )
        except PaymentGatewayError:
            logger.warning(f"Withdrawal {reference} failed at gateway, reversing debit")
            await self.reverse_withdrawal(reference)
            raise

        logger.info(f"Withdrawal processed: {transaction.amount} from {account.id} (REF: {reference})")
        return transaction

    async def reverse_withdrawal(self, reference: str) -> Optional[Transaction]:
        """
        Refunds a withdrawal the gateway did not complete. Idempotent per
        reference; also marks the withdrawal and its receipt as failed.
        """
        withdrawal = await self.ledger.store.find_transaction(reference, TransactionType.WITHDRAWAL)
        if withdrawal is None:
            logger.warning(f"No withdrawal found to reverse for reference {reference}")
            return None

        try:
            reversal = await self.ledger.credit(
                withdrawal.account_id,
                withdrawal.amount,
                f"Reversal of withdrawal {reference}",
                reference=reference,
                metadata={"reversal_of": str(withdrawal.id)},
                allow_inactive=True,
            )
        except DuplicateTransactionError:
            return await self.ledger.store.find_transaction(reference, TransactionType.CREDIT)

        await self.ledger.store.update_transaction_status(withdrawal.id, TransactionStatus.FAILED)
        await self.receipts.mark_failed(withdrawal.id)
        logger.info(f"Withdrawal {reference} reversed (TX: {reversal.id})")
        return reversal

    async def handle_webhook(self, event: Dict[str, Any]) -> Optional[Transaction]:
        kind = event.get("event")
        data = event.get("data") or {}
        reference = data.get("reference")
        logger.info(f"Paystack webhook received: {kind} {reference}")

        if kind == "charge.success" and reference:
            return await self.complete_top_up(reference)
        if kind in ("transfer.failed", "transfer.reversed") and reference:
            return await self.reverse_withdrawal(reference)
        if kind == "transfer.success":
            logger.info(f"Transfer successful: {reference}")
            return None

        logger.info(f"Unhandled webhook event: {kind}")
        return None

    async def list_banks(self) -> List[Dict[str, Any]]:
        return await self.gateway.list_banks(currency=self.settings.DEFAULT_CURRENCY)

