import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from httpx import MockTransport, Response
import httpx

from vsend.exceptions import PaymentGatewayError
from vsend.services.gateway import PaystackGateway
from vsend.utils.amounts import to_minor_units

TEST_PIN = "1234"
WEBHOOK_SECRET = "sk_test_fake"


class Clock:
    """Settable clock so tests can write rows in the past."""

    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def shift(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeGateway(PaystackGateway):
    """
    In-memory stand-in for Paystack. Payments initialized here verify as
    successful unless listed in failed_payments.
    """

    def __init__(self):
        super().__init__(
            secret_key=WEBHOOK_SECRET,
            client=httpx.AsyncClient(transport=MockTransport(lambda request: Response(500))),
        )
        self.payments = {}
        self.failed_payments = set()
        self.transfers = []
        self.fail_transfers = False

    async def initialize_payment(self, email, amount, reference, currency="GHS", metadata=None, callback_url=None):
        self.payments[reference] = {
            "id": len(self.payments) + 1,
            "reference": reference,
            "amount": to_minor_units(amount),
            "currency": currency,
            "metadata": metadata or {},
        }
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference}",
            "access_code": "code",
            "reference": reference,
        }

    async def verify_payment(self, reference):
        if reference not in self.payments:
            raise PaymentGatewayError("Transaction reference not found")
        data = dict(self.payments[reference])
        data["status"] = "failed" if reference in self.failed_payments else "success"
        return data

    async def list_banks(self, currency="GHS"):
        return [{"name": "GCB Bank", "code": "040", "currency": currency}]

    async def resolve_account_number(self, account_number, bank_code):
        return {"account_number": account_number, "account_name": "KOFI MENSAH"}

    async def create_transfer_recipient(self, name, account_number, bank_code, currency="GHS", recipient_type="nuban"):
        return {"recipient_code": f"RCP_{account_number}", "name": name}

    async def initiate_transfer(self, amount, recipient_code, reason, reference):
        if self.fail_transfers:
            raise PaymentGatewayError("Insufficient balance on integration")
        self.transfers.append({"amount": amount, "recipient": recipient_code, "reference": reference})
        return {"reference": reference, "status": "pending"}

    def sign(self, event: dict):
        body = json.dumps(event).encode()
        signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()
        return body, signature


async def make_user(services, phone, first_name="", last_name="", pin=TEST_PIN, balance=None):
    """Registers a user with a PIN and optionally funds the account."""
    user, account = await services.wallet.register(phone, first_name, last_name)
    if pin is not None:
        await services.vault.setup(user.id, pin, pin)
    if balance:
        await services.ledger.credit(account.id, Decimal(balance), "Opening balance")
    return user, account
