import logging
from uuid import UUID

from vsend.exceptions import InvalidPinError
from vsend.services.pin_vault import PinVault

logger = logging.getLogger(__name__)


class AuthorizationGate:
    """
    PIN check that every money-movement entry point runs before it reads or
    writes any account. A failure here leaves the ledger untouched.
    """

    def __init__(self, vault: PinVault):
        self.vault = vault

    async def authorize(self, user_id: UUID, supplied_pin: str) -> None:
        # PinNotSetUpError from the vault propagates unchanged
        if not await self.vault.verify(user_id, supplied_pin):
            logger.warning(f"Authorization refused for user {user_id}: invalid PIN")
            raise InvalidPinError()
