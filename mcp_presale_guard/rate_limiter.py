"""
Purchase Rate Limiting System

This module implements the per-account Rate Guard that every purchase passes through.
It prevents bot-driven allocation drain by spacing out purchases, bounding the USD
value of each one and capping the number of purchases per period.

Rate Limiting Algorithm (first failure wins):
1. Reject TooFrequent if the account's previous purchase was less than
   min_time_between_tx seconds ago
2. Reject AmountOutOfBounds if the USD value is outside [min, max]
3. If the account's period has elapsed, reset its count and volume and start a new
   period at `now` (before the count check, so an idle account is never blocked)
4. Reject TooManyTransactions if the account already used max_tx_per_period

Records are created lazily: an account that was never seen reads as the zero-value
RateRecord. A check is evaluated on a copy of the record and committed in a single
assignment under the guard's lock, so a rejection never changes the record and a
concurrent reader never observes a half-updated one.

Administrative operations (reset_account, update_config, update_purchase_bounds) are
not access-controlled here; the caller decides who may invoke them.
"""
import threading
import time
from typing import Callable, Dict, Optional

from mcp_presale_guard.checked_math import checked_add
from mcp_presale_guard.errors import (
    AmountOutOfBoundsError,
    InvalidConfigError,
    TooFrequentError,
    TooManyTransactionsError,
)
from mcp_presale_guard.schemas import (
    AccountReset,
    GuardEvent,
    PurchaseBounds,
    PurchaseBoundsUpdated,
    RateConfigUpdated,
    RateLimitConfig,
    RateRecord,
    TransactionChecked,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

EventSink = Callable[[GuardEvent], None]


class RateGuard:
    """Per-account sliding-period limiter."""

    def __init__(
        self,
        limits: RateLimitConfig,
        bounds: PurchaseBounds,
        event_sink: Optional[EventSink] = None,
    ):
        _validate_limits(limits.min_time_between_tx, limits.max_tx_per_period, limits.period)
        _validate_bounds(bounds.min_purchase_amount, bounds.max_purchase_amount)
        self._limits = limits
        self._bounds = bounds
        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()
        self._event_sink = event_sink

    @property
    def limits(self) -> RateLimitConfig:
        return self._limits.model_copy()

    @property
    def bounds(self) -> PurchaseBounds:
        return self._bounds.model_copy()

    def get_record(self, account: str) -> RateRecord:
        """Returns a copy of the account's record, or the zero value if it has none."""
        with self._lock:
            return self._records.get(account, RateRecord()).model_copy()

    def records(self) -> Dict[str, RateRecord]:
        with self._lock:
            return {account: record.model_copy() for account, record in self._records.items()}

    def load_records(self, records: Dict[str, RateRecord]) -> None:
        """Replaces all records, e.g. when restoring a saved snapshot."""
        with self._lock:
            self._records = {account: record.model_copy() for account, record in records.items()}

    def check_and_consume(self, account: str, usd_amount: int, now: Optional[int] = None) -> RateRecord:
        """
        Checks whether the account may purchase `usd_amount` now and, if so, records it.

        Args:
            account: The purchasing account identifier.
            usd_amount: USD value of the purchase (6 implied decimals).
            now: Unix timestamp of the check; defaults to the current time.

        Returns:
            A copy of the committed record.

        Raises:
            TooFrequentError, AmountOutOfBoundsError, TooManyTransactionsError
        """
        if now is None:
            now = int(time.time())

        with self._lock:
            limits = self._limits
            bounds = self._bounds
            record = self._records.get(account, RateRecord()).model_copy()

            next_allowed = record.last_transaction_time + limits.min_time_between_tx
            if now < next_allowed:
                logger.warning(f"Purchase too frequent for account {account}: now={now}, next allowed at {next_allowed}")
                raise TooFrequentError(
                    f"Purchases from {account} are too frequent; next purchase allowed at {next_allowed}",
                    account=account, now=now, next_allowed=next_allowed,
                )

            if not (bounds.min_purchase_amount <= usd_amount <= bounds.max_purchase_amount):
                logger.warning(f"Purchase amount {usd_amount} out of bounds for account {account}")
                raise AmountOutOfBoundsError(
                    f"Purchase amount {usd_amount} is outside [{bounds.min_purchase_amount}, {bounds.max_purchase_amount}]",
                    account=account, amount=usd_amount,
                    min_amount=bounds.min_purchase_amount, max_amount=bounds.max_purchase_amount,
                )

            if now >= record.period_start + limits.period:
                record.transaction_count = 0
                record.total_volume_usd = 0
                record.period_start = now
                logger.debug(f"Rate limit period reset for account {account}")

            if record.transaction_count >= limits.max_tx_per_period:
                logger.warning(f"Too many transactions for account {account}. Count: {record.transaction_count}, Limit: {limits.max_tx_per_period}")
                raise TooManyTransactionsError(
                    f"Account {account} reached {limits.max_tx_per_period} purchases in the current period",
                    account=account, count=record.transaction_count, limit=limits.max_tx_per_period,
                    period_start=record.period_start,
                )

            record.last_transaction_time = now
            record.transaction_count += 1
            record.total_volume_usd = checked_add(record.total_volume_usd, usd_amount)
            self._records[account] = record

        logger.debug(f"Rate limit check passed for account {account}. Count: {record.transaction_count}")
        self._emit(TransactionChecked(
            account=account, usd_amount=usd_amount,
            transaction_count=record.transaction_count, timestamp=now,
        ))
        return record.model_copy()

    def reset_account(self, account: str) -> bool:
        """Deletes the account's record. Returns False if it had none."""
        with self._lock:
            existed = self._records.pop(account, None) is not None
        logger.info(f"Rate limit record reset for account {account} (existed={existed})")
        self._emit(AccountReset(account=account))
        return existed

    def update_config(self, min_time_between_tx: int, max_tx_per_period: int, period: int) -> RateLimitConfig:
        _validate_limits(min_time_between_tx, max_tx_per_period, period)
        limits = RateLimitConfig(
            min_time_between_tx=min_time_between_tx,
            max_tx_per_period=max_tx_per_period,
            period=period,
        )
        with self._lock:
            self._limits = limits
        logger.info(f"Rate limit config updated: {limits.model_dump()}")
        self._emit(RateConfigUpdated(**limits.model_dump()))
        return limits.model_copy()

    def update_purchase_bounds(self, min_purchase_amount: int, max_purchase_amount: int) -> PurchaseBounds:
        _validate_bounds(min_purchase_amount, max_purchase_amount)
        bounds = PurchaseBounds(
            min_purchase_amount=min_purchase_amount,
            max_purchase_amount=max_purchase_amount,
        )
        with self._lock:
            self._bounds = bounds
        logger.info(f"Purchase bounds updated: {bounds.model_dump()}")
        self._emit(PurchaseBoundsUpdated(**bounds.model_dump()))
        return bounds.model_copy()

    def _emit(self, event: GuardEvent) -> None:
        if self._event_sink is not None:
            self._event_sink(event)


def _validate_limits(min_time_between_tx: int, max_tx_per_period: int, period: int) -> None:
    if min_time_between_tx <= 0 or max_tx_per_period <= 0 or period <= 0:
        raise InvalidConfigError(
            "Rate limit values must be strictly positive",
            min_time_between_tx=min_time_between_tx,
            max_tx_per_period=max_tx_per_period,
            period=period,
        )


def _validate_bounds(min_purchase_amount: int, max_purchase_amount: int) -> None:
    if min_purchase_amount <= 0 or min_purchase_amount > max_purchase_amount:
        raise InvalidConfigError(
            "Purchase bounds must satisfy 0 < min <= max",
            min_purchase_amount=min_purchase_amount,
            max_purchase_amount=max_purchase_amount,
        )
