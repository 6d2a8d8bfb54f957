import hashlib
import hmac
import logging
import re
import secrets
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update

from vsend.exceptions import InvalidPinError, PinNotSetUpError, PinValidationError
from vsend.models import PinCredential
from vsend.services.store import SqlStore, store_call

logger = logging.getLogger(__name__)

PIN_FORMAT = re.compile(r"[0-9]{4,6}")
PBKDF2_SCHEME = "pbkdf2_sha256"


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_pin(pin: str, salt: str, iterations: int) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", pin.encode(), salt.encode(), iterations).hex()
    return f"{PBKDF2_SCHEME}${iterations}${digest}"


def legacy_hash_pin(pin: str, salt: str) -> str:
    # Single-pass SHA256(pin + salt) written by the first mobile clients
    return hashlib.sha256((pin + salt).encode()).hexdigest()


def is_legacy_hash(hashed_pin: str) -> bool:
    return not hashed_pin.startswith(PBKDF2_SCHEME + "$")


def check_pin(pin: str, salt: str, hashed_pin: str) -> bool:
    if is_legacy_hash(hashed_pin):
        candidate = legacy_hash_pin(pin, salt)
    else:
        _, iterations, _ = hashed_pin.split("$", 2)
        candidate = hash_pin(pin, salt, int(iterations))
    return hmac.compare_digest(candidate, hashed_pin)


class PinStore(SqlStore):

    @store_call(retry=True)
    async def get_active_credential(self, user_id: UUID) -> Optional[PinCredential]:
        async with self.session_factory() as session:
            query = (
                select(PinCredential)
                .where(PinCredential.user_id == user_id, PinCredential.is_active.is_(True))
                .order_by(PinCredential.created_at.desc())
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call()
    async def create_credential(self, user_id: UUID, hashed_pin: str, salt: str) -> PinCredential:
        """Adds a new active credential, deactivating any previous one in the same transaction."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(PinCredential)
                    .where(PinCredential.user_id == user_id, PinCredential.is_active.is_(True))
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
                credential = PinCredential(user_id=user_id, hashed_pin=hashed_pin, salt=salt, is_active=True)
                session.add(credential)
            return credential

    @store_call()
    async def deactivate_credential(self, credential_id: UUID) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(PinCredential)
                    .where(PinCredential.id == credential_id)
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )

    @store_call()
    async def touch_last_used(self, credential_id: UUID) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(PinCredential)
                    .where(PinCredential.id == credential_id)
                    .values(last_used_at=self.clock())
                    .execution_options(synchronize_session=False)
                )


class PinVault:
    """
    Holds one verifiable PIN secret per user. Raw PINs are never stored or logged.
    """

    def __init__(self, store: PinStore, iterations: int = 260000):
        self.store = store
        self.iterations = iterations

    @staticmethod
    def validate_format(pin, confirm_pin) -> None:
        if not isinstance(pin, str) or not PIN_FORMAT.fullmatch(pin):
            raise PinValidationError("PIN must be 4-6 digits")
        if pin != confirm_pin:
            raise PinValidationError("PIN confirmation does not match")

    async def setup(self, user_id: UUID, pin: str, confirm_pin: str) -> None:
        self.validate_format(pin, confirm_pin)
        salt = generate_salt()
        await self.store.create_credential(user_id, hash_pin(pin, salt, self.iterations), salt)
        logger.info(f"PIN setup completed for user: {user_id}")

    async def verify(self, user_id: UUID, pin: str) -> bool:
        """
        Returns whether the PIN matches the user's active credential.
        Raises PinNotSetUpError when the user has none.
        """
        credential = await self.store.get_active_credential(user_id)
        if credential is None:
            raise PinNotSetUpError()

        if not isinstance(pin, str) or not check_pin(pin, credential.salt, credential.hashed_pin):
            logger.info(f"Invalid PIN attempt for user: {user_id}")
            return False

        if is_legacy_hash(credential.hashed_pin):
            # Rotate to the iterated scheme now that the raw PIN is known to be right
            salt = generate_salt()
            await self.store.create_credential(user_id, hash_pin(pin, salt, self.iterations), salt)
            logger.info(f"Upgraded legacy PIN hash for user: {user_id}")
        else:
            await self.store.touch_last_used(credential.id)
        return True

    async def has_credential(self, user_id: UUID) -> bool:
        return await self.store.get_active_credential(user_id) is not None

    async def change(self, user_id: UUID, old_pin: str, new_pin: str, confirm_pin: str) -> None:
        if not await self.verify(user_id, old_pin):
            raise InvalidPinError()
        await self.setup(user_id, new_pin, confirm_pin)
        logger.info(f"PIN changed for user: {user_id}")

    async def revoke(self, user_id: UUID) -> None:
        credential = await self.store.get_active_credential(user_id)
        if credential is not None:
            await self.store.deactivate_credential(credential.id)
            logger.info(f"PIN revoked for user: {user_id}")
