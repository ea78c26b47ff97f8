"""
Broker Engine - Balance History.

============================================================
PURPOSE
============================================================
Fixed-length daily balance series for a broker.

1. Fetch today's wallet balances live and cache them under
   today's UTC date
2. Bulk-read the previous days from the cache
3. Missing days are null, never zero
4. Ascending by date

============================================================
"""

import logging
from datetime import date, timedelta
from typing import Awaitable, Callable, List, Optional

from core.clock import ClockProtocol, SystemClock

from .cache import AccountStateCache
from .snapshots import DailyBalance, WalletBalance, WALLET_BALANCES
from .types import ValidationError


logger = logging.getLogger(__name__)


class BalanceHistoryAssembler:
    """Builds daily balance history from the cache."""

    def __init__(self, cache: AccountStateCache, clock: Optional[ClockProtocol] = None):
        self._cache = cache
        self._clock = clock or SystemClock()

    def check_days(self, days: int) -> None:
        """Raise ValidationError unless 1 <= days <= max_history_days."""
        max_days = self._cache.config.max_history_days
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= max_days:
            raise ValidationError(f"days must be between 1 and {max_days}")

    def dates(self, days: int) -> List[date]:
        """`days` consecutive UTC dates ending today, newest first."""
        today = self._clock.today()
        return [today - timedelta(days=offset) for offset in range(days)]

    async def history(
        self,
        broker_id: str,
        days: int,
        fetch_today: Callable[[], Awaitable[List[WalletBalance]]],
    ) -> List[DailyBalance]:
        """
        Assemble balance history.

        Args:
            broker_id: Broker whose balances are read
            days: Number of days, 1..max_history_days
            fetch_today: Live fetch of today's wallet balances

        Returns:
            One entry per day, ascending by date

        Raises:
            ValidationError: If days is out of range
        """
        self.check_days(days)

        keys = self._cache.keys
        history_dates = self.dates(days)

        today_balance = await fetch_today()
        await self._cache.set(
            keys.daily_balance(broker_id, history_dates[0]),
            today_balance,
            WALLET_BALANCES,
            self._cache.config.daily_balance_ttl_seconds,
        )

        balances = await self._cache.get_many(
            [keys.daily_balance(broker_id, day) for day in history_dates],
            WALLET_BALANCES,
        )

        history = [
            DailyBalance(date=day.isoformat(), balance=balance)
            for day, balance in zip(history_dates, balances)
        ]
        history.sort(key=lambda entry: entry.date)

        logger.debug(
            f"Balance history for broker {broker_id}: {days} days, "
            f"{sum(1 for entry in history if entry.balance is None)} missing"
        )
        return history
