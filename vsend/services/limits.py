import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from vsend.exceptions import DailyLimitExceededError, MonthlyLimitExceededError
from vsend.models import Account, DEBIT_LIKE_TYPES
from vsend.services.store import LedgerStore, utcnow

logger = logging.getLogger(__name__)


class LimitPolicy:
    """
    Caps cumulative debit-like movement (debit, transfer_out, withdrawal) per
    account within the current calendar day and calendar month.

    This is a read-then-compare check: two concurrent requests can both pass
    it. The balance itself is protected by the store's conditional update.
    """

    def __init__(self, store: LedgerStore, tz_name: str = "UTC",
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
        self.clock = clock

    def window_starts(self, now: Optional[datetime] = None):
        """Returns (start_of_day, start_of_month) in UTC for the configured zone."""
        local = (now or self.clock()).astimezone(self.tz)
        day = local.replace(hour=0, minute=0, second=0, microsecond=0)
        month = day.replace(day=1)
        return day.astimezone(timezone.utc), month.astimezone(timezone.utc)

    async def spent_since(self, account: Account, since: datetime) -> Decimal:
        return await self.store.sum_amounts(account.id, DEBIT_LIKE_TYPES, since)

    async def check_limit(self, account: Account, amount: Decimal) -> None:
        start_of_day, start_of_month = self.window_starts()

        spent_today = await self.spent_since(account, start_of_day)
        if spent_today + amount > account.daily_limit:
            logger.info(f"Daily limit hit on {account.id}: spent {spent_today} + {amount} > {account.daily_limit}")
            raise DailyLimitExceededError()

        spent_month = await self.spent_since(account, start_of_month)
        if spent_month + amount > account.monthly_limit:
            logger.info(f"Monthly limit hit on {account.id}: spent {spent_month} + {amount} > {account.monthly_limit}")
            raise MonthlyLimitExceededError()
