import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from vsend.exceptions import PhoneAlreadyRegisteredError
from vsend.models import User
from vsend.services.store import SqlStore, store_call

logger = logging.getLogger(__name__)


class UserDirectory(SqlStore):
    """
    Lookup of wallet users by id and phone number. Phone numbers are stored
    and queried in normalized local form.
    """

    @store_call(retry=True)
    async def get_user(self, user_id: UUID) -> Optional[User]:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    @store_call(retry=True)
    async def get_user_by_phone(self, phone_number: str) -> Optional[User]:
        async with self.session_factory() as session:
            query = select(User).where(User.phone_number == phone_number)
            result = await session.execute(query)
            return result.scalar_one_or_none()

    @store_call()
    async def create_user(
        self,
        phone_number: str,
        first_name: str = "",
        last_name: str = "",
        email: Optional[str] = None,
    ) -> User:
        async with self.session_factory() as session:
            user = User(
                phone_number=phone_number,
                first_name=first_name or "",
                last_name=last_name or "",
                email=email,
                is_active=True,
                is_verified=False,
            )
            try:
                async with session.begin():
                    session.add(user)
            except IntegrityError:
                logger.info(f"Registration rejected, phone already in use: {phone_number}")
                raise PhoneAlreadyRegisteredError()
            await session.refresh(user)
            logger.info(f"Created user {user.id} for {phone_number}")
            return user

    @store_call()
    async def set_active(self, user_id: UUID, is_active: bool) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                user = await session.get(User, user_id)
                if user is not None:
                    user.is_active = is_active
