from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from vsend.core.config import Settings, settings as default_settings
from vsend.services.authorization import AuthorizationGate
from vsend.services.directory import UserDirectory
from vsend.services.gateway import PaystackGateway
from vsend.services.ledger import LedgerService
from vsend.services.limits import LimitPolicy
from vsend.services.pin_vault import PinStore, PinVault
from vsend.services.receipts import ReceiptRecorder
from vsend.services.store import LedgerStore, utcnow
from vsend.services.wallet import WalletService


@dataclass
class Services:
    store: LedgerStore
    directory: UserDirectory
    vault: PinVault
    gate: AuthorizationGate
    limits: LimitPolicy
    receipts: ReceiptRecorder
    ledger: LedgerService
    wallet: WalletService
    gateway: PaystackGateway


def build_services(
    session_factory: async_sessionmaker,
    settings: Settings = default_settings,
    gateway: Optional[PaystackGateway] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    """
    Constructs every store and service once and wires them together.
    The API keeps the result on app.state; tests build their own.
    """
    store_options = dict(
        retry_attempts=settings.STORE_RETRY_ATTEMPTS,
        retry_backoff=settings.STORE_RETRY_BACKOFF,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        clock=clock,
    )
    store = LedgerStore(session_factory, **store_options)
    directory = UserDirectory(session_factory, **store_options)
    vault = PinVault(PinStore(session_factory, **store_options), iterations=settings.PIN_HASH_ITERATIONS)
    gate = AuthorizationGate(vault)
    limits = LimitPolicy(store, tz_name=settings.LIMIT_TIMEZONE, clock=clock)
    receipts = ReceiptRecorder(store)
    ledger = LedgerService(store, directory, gate, limits, receipts)

    if gateway is None:
        gateway = PaystackGateway(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
        )
    wallet = WalletService(ledger, directory, gate, receipts, gateway, settings)

    return Services(
        store=store,
        directory=directory,
        vault=vault,
        gate=gate,
        limits=limits,
        receipts=receipts,
        ledger=ledger,
        wallet=wallet,
        gateway=gateway,
    )
