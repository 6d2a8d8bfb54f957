import pytest
from decimal import Decimal
from uuid import uuid4

from vsend.exceptions import (
    InvalidPinError,
    InvalidPhoneNumberError,
    PaymentGatewayError,
    PaymentVerificationError,
    PhoneAlreadyRegisteredError,
    RecipientNotFoundError,
    StoreUnavailableError,
    UserNotFoundError,
)
from vsend.models import AccountStatus, ReceiptStatus, ReceiptType, TransactionStatus, TransactionType
from vsend.tests.support import TEST_PIN, make_user


@pytest.mark.asyncio
async def test_register_normalizes_phone_and_opens_account(services):
    user, account = await services.wallet.register("+233 24 765 4321", "Esi", "Badu")

    assert user.phone_number == "0247654321"
    assert user.full_name == "Esi Badu"
    assert account.owner_id == user.id
    assert account.balance == Decimal("0.00")
    assert account.currency == "GHS"
    assert account.account_number.startswith("VSE")

@pytest.mark.asyncio
async def test_register_duplicate_phone(services):
    await services.wallet.register("0247654321")
    with pytest.raises(PhoneAlreadyRegisteredError):
        await services.wallet.register("233247654321")

@pytest.mark.asyncio
async def test_register_invalid_phone(services):
    with pytest.raises(InvalidPhoneNumberError):
        await services.wallet.register("12345")

@pytest.mark.asyncio
async def test_ensure_account_is_get_or_create(services):
    user, account = await services.wallet.register("0247654321")
    again = await services.wallet.ensure_account(user.id)
    assert again.id == account.id

    with pytest.raises(UserNotFoundError):
        await services.wallet.ensure_account(uuid4())

@pytest.mark.asyncio
async def test_lookup_recipient(services, recipient):
    user = await services.wallet.lookup_recipient("055 123 4567")
    assert user.full_name == "Kofi Mensah"

    with pytest.raises(RecipientNotFoundError):
        await services.wallet.lookup_recipient("0209999999")

@pytest.mark.asyncio
async def test_send_money(services, sender, recipient):
    sender_user, sender_account = sender
    recipient_user, recipient_account = recipient

    txn = await services.wallet.send_money(sender_user.id, "0551234567", "25.00", "Dinner", TEST_PIN)
    assert txn.type == TransactionType.TRANSFER_OUT
    assert await services.ledger.get_account_balance(sender_account.id) == Decimal("475.00")
    assert await services.ledger.get_account_balance(recipient_account.id) == Decimal("75.00")

@pytest.mark.asyncio
async def test_make_payment_records_payment_receipt(services, sender, recipient):
    sender_user, _ = sender
    txn = await services.wallet.make_payment(sender_user.id, "0551234567", "40.00", "Invoice 17", TEST_PIN)

    assert txn.description == "Transfer to 0551234567: Payment: Invoice 17"
    receipt = await services.receipts.get_by_transaction(txn.id)
    assert receipt.receipt_type == ReceiptType.PAYMENT
    assert receipt.balance_after == Decimal("460.00")

@pytest.mark.asyncio
async def test_top_up_credits_once(services, sender, gateway):
    user, account = sender
    started = await services.wallet.initiate_top_up(user.id, "150.00", TEST_PIN)
    assert started["authorization_url"].endswith(started["reference"])
    assert started["reference"].startswith("TOPUP")
    # Nothing moves until the gateway confirms
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")

    first = await services.wallet.complete_top_up(started["reference"])
    second = await services.wallet.complete_top_up(started["reference"])

    assert first.id == second.id
    assert first.type == TransactionType.TOPUP
    assert first.reference == started["reference"]
    assert await services.ledger.get_account_balance(account.id) == Decimal("650.00")

    receipt = await services.receipts.get_by_transaction(first.id)
    assert receipt.receipt_type == ReceiptType.TOPUP

@pytest.mark.asyncio
async def test_top_up_requires_pin(services, sender, gateway):
    user, _ = sender
    with pytest.raises(InvalidPinError):
        await services.wallet.initiate_top_up(user.id, "150.00", "0000")
    assert gateway.payments == {}

@pytest.mark.asyncio
async def test_failed_top_up_not_credited(services, sender, gateway):
    user, account = sender
    started = await services.wallet.initiate_top_up(user.id, "150.00", TEST_PIN)
    gateway.failed_payments.add(started["reference"])

    with pytest.raises(PaymentVerificationError):
        await services.wallet.complete_top_up(started["reference"])
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")

@pytest.mark.asyncio
async def test_top_up_without_amount_not_credited(services, sender, gateway):
    user, account = sender
    started = await services.wallet.initiate_top_up(user.id, "150.00", TEST_PIN)
    del gateway.payments[started["reference"]]["amount"]

    with pytest.raises(PaymentVerificationError):
        await services.wallet.complete_top_up(started["reference"])
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")

@pytest.mark.asyncio
async def test_withdraw(services, sender, gateway):
    user, account = sender
    txn = await services.wallet.withdraw(user.id, "120.00", "040", "1234567890", TEST_PIN)

    assert txn.type == TransactionType.WITHDRAWAL
    assert txn.reference.startswith("WITHDRAW")
    assert await services.ledger.get_account_balance(account.id) == Decimal("380.00")
    assert gateway.transfers == [
        {"amount": Decimal("120.00"), "recipient": "RCP_1234567890", "reference": txn.reference}
    ]

@pytest.mark.asyncio
async def test_withdraw_reversed_when_gateway_fails(services, sender, gateway):
    user, account = sender
    gateway.fail_transfers = True

    with pytest.raises(PaymentGatewayError):
        await services.wallet.withdraw(user.id, "120.00", "040", "1234567890", TEST_PIN)

    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")
    withdrawals = await services.ledger.list_transactions(account.id, txn_type=TransactionType.WITHDRAWAL)
    assert len(withdrawals) == 1
    assert withdrawals[0].status == TransactionStatus.FAILED

    receipt = await services.receipts.get_by_transaction(withdrawals[0].id)
    assert receipt.status == ReceiptStatus.FAILED

@pytest.mark.asyncio
async def test_transfer_failed_webhook_refunds_once(services, sender):
    user, account = sender
    txn = await services.wallet.withdraw(user.id, "120.00", "040", "1234567890", TEST_PIN)
    event = {"event": "transfer.failed", "data": {"reference": txn.reference}}

    first = await services.wallet.handle_webhook(event)
    second = await services.wallet.handle_webhook(event)

    assert first.id == second.id
    assert first.type == TransactionType.CREDIT
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")

@pytest.mark.asyncio
async def test_transfer_failed_webhook_refunds_suspended_account(services, sender):
    user, account = sender
    txn = await services.wallet.withdraw(user.id, "100.00", "040", "1234567890", TEST_PIN)
    await services.store.set_account_status(account.id, AccountStatus.SUSPENDED)

    refund = await services.wallet.handle_webhook({"event": "transfer.failed", "data": {"reference": txn.reference}})

    assert refund.type == TransactionType.CREDIT
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")
    withdrawals = await services.ledger.list_transactions(account.id, txn_type=TransactionType.WITHDRAWAL)
    assert withdrawals[0].status == TransactionStatus.FAILED

@pytest.mark.asyncio
async def test_withdraw_reversed_when_account_suspended_mid_payout(services, sender, gateway, monkeypatch):
    user, account = sender

    async def suspend_then_fail(amount, recipient_code, reason, reference):
        await services.store.set_account_status(account.id, AccountStatus.SUSPENDED)
        raise PaymentGatewayError("Transfer rejected")

    monkeypatch.setattr(gateway, "initiate_transfer", suspend_then_fail)

    with pytest.raises(PaymentGatewayError):
        await services.wallet.withdraw(user.id, "100.00", "040", "1234567890", TEST_PIN)
    assert await services.ledger.get_account_balance(account.id) == Decimal("500.00")

@pytest.mark.asyncio
async def test_charge_success_webhook_completes_top_up(services, sender):
    user, account = sender
    started = await services.wallet.initiate_top_up(user.id, "30.00", TEST_PIN)

    await services.wallet.handle_webhook({"event": "charge.success", "data": {"reference": started["reference"]}})
    await services.wallet.complete_top_up(started["reference"])
    assert await services.ledger.get_account_balance(account.id) == Decimal("530.00")

@pytest.mark.asyncio
async def test_unhandled_webhook_ignored(services):
    assert await services.wallet.handle_webhook({"event": "subscription.create", "data": {}}) is None

@pytest.mark.asyncio
async def test_receipt_failure_does_not_undo_transfer(services, sender, recipient, monkeypatch):
    sender_user, sender_account = sender
    _, recipient_account = recipient

    async def broken_receipt(**fields):
        raise StoreUnavailableError()

    monkeypatch.setattr(services.store, "create_receipt", broken_receipt)

    txn = await services.wallet.send_money(sender_user.id, "0551234567", "60.00", "No receipt", TEST_PIN)
    assert await services.ledger.get_account_balance(sender_account.id) == Decimal("440.00")
    assert await services.ledger.get_account_balance(recipient_account.id) == Decimal("110.00")
    assert await services.receipts.get_by_transaction(txn.id) is None

@pytest.mark.asyncio
async def test_receipt_number_collision_retried(services, sender, monkeypatch):
    _, account = sender
    numbers = iter(["VSE1", "VSE1", "VSE2"])
    monkeypatch.setattr("vsend.services.receipts.generate_receipt_number", lambda: next(numbers))

    first = await services.ledger.credit(account.id, "5.00", "Cash in")
    second = await services.ledger.credit(account.id, "5.00", "Cash in")

    assert (await services.receipts.get_by_transaction(first.id)).receipt_number == "VSE1"
    assert (await services.receipts.get_by_transaction(second.id)).receipt_number == "VSE2"

@pytest.mark.asyncio
async def test_list_banks(services):
    banks = await services.wallet.list_banks()
    assert banks[0]["code"] == "040"

@pytest.mark.asyncio
async def test_receipts_listed_for_phone(services, sender, recipient):
    sender_user, _ = sender
    await services.wallet.send_money(sender_user.id, "0551234567", "10.00", "Snacks", TEST_PIN)

    sent = await services.receipts.list_for_phone("0241234567")
    received = await services.receipts.list_for_phone("0551234567")
    assert ReceiptType.SEND in [r.receipt_type for r in sent]
    assert ReceiptType.SEND in [r.receipt_type for r in received]
