"""
Token Vesting Ledger

This module keeps the linear vesting schedules granted to presale buyers and computes
how much of each grant can be claimed at a given time.

Vesting Curve:
- Before start_time + cliff_duration nothing is vested
- From start_time + vesting_duration the whole grant is vested
- In between, vested = total * (now - start - cliff) / (vesting - cliff), computed
  with checked 256-bit arithmetic, multiplying before dividing

A vested amount above the grant total means an invariant is broken and raises
CalculationOverflowError rather than a rejection.

Claims pay out vested - claimed. The vault balance is queried by the caller and
passed in; it is checked before the schedule is touched, so a rejected claim never
changes claimed_amount. Schedules move Unvested -> PartiallyVested -> FullyVested ->
FullyClaimed and are kept after they are fully claimed.
"""
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from mcp_presale_guard.checked_math import checked_add, checked_mul, checked_sub, mul_div
from mcp_presale_guard.errors import (
    CalculationOverflowError,
    InsufficientVaultBalanceError,
    InvalidConfigError,
    NothingToClaimError,
    ScheduleExistsError,
    ScheduleNotFoundError,
)
from mcp_presale_guard.schemas import (
    GuardEvent,
    ScheduleCreated,
    TokensClaimed,
    VestingSchedule,
    VestingState,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

ScheduleKey = Tuple[str, str]


def vested_amount(schedule: VestingSchedule, now: int) -> int:
    """Returns the cumulative amount vested for the schedule at `now`."""
    if now < schedule.cliff_end:
        return 0
    if now >= schedule.vesting_end:
        vested = schedule.total_amount
    else:
        elapsed = now - schedule.cliff_end
        vesting_span = schedule.vesting_duration - schedule.cliff_duration
        vested = mul_div(schedule.total_amount, elapsed, vesting_span)

    if vested > schedule.total_amount:
        raise CalculationOverflowError(
            f"Vested amount {vested} exceeds grant total {schedule.total_amount}",
            beneficiary=schedule.beneficiary, grant_id=schedule.grant_id,
        )
    return vested


def claimable_amount(schedule: VestingSchedule, now: int) -> int:
    vested = vested_amount(schedule, now)
    if vested < schedule.claimed_amount:
        return 0
    return vested - schedule.claimed_amount


def schedule_state(schedule: VestingSchedule, now: int) -> VestingState:
    if schedule.claimed_amount >= schedule.total_amount:
        return VestingState.fully_claimed
    if now < schedule.cliff_end:
        return VestingState.unvested
    if now < schedule.vesting_end:
        return VestingState.partially_vested
    return VestingState.fully_vested


def claim(schedule: VestingSchedule, external_balance: int, now: int) -> int:
    """
    Pays out everything claimable from the schedule.

    Args:
        schedule: The schedule to claim from; its claimed_amount is updated on success.
        external_balance: Tokens currently held by the vault.
        now: Unix timestamp of the claim.

    Returns:
        The payout the caller must transfer to the beneficiary.

    Raises:
        NothingToClaimError: If nothing has vested since the last claim.
        InsufficientVaultBalanceError: If the vault cannot cover the payout.
    """
    claimable = claimable_amount(schedule, now)
    if claimable <= 0:
        raise NothingToClaimError(
            f"Nothing to claim for {schedule.beneficiary} grant {schedule.grant_id}",
            beneficiary=schedule.beneficiary, grant_id=schedule.grant_id,
            claimed_amount=schedule.claimed_amount,
        )
    if claimable > external_balance:
        raise InsufficientVaultBalanceError(
            f"Vault balance {external_balance} cannot cover claim of {claimable}",
            beneficiary=schedule.beneficiary, grant_id=schedule.grant_id,
            amount=claimable, balance=external_balance,
        )

    new_claimed = checked_add(schedule.claimed_amount, claimable)
    if new_claimed > schedule.total_amount:
        raise CalculationOverflowError(
            f"Claimed amount {new_claimed} would exceed grant total {schedule.total_amount}",
            beneficiary=schedule.beneficiary, grant_id=schedule.grant_id,
        )
    schedule.claimed_amount = new_claimed
    return claimable


def _validate_terms(total_amount: int, start_time: int, cliff_duration: int, vesting_duration: int) -> None:
    if total_amount <= 0:
        raise InvalidConfigError("Grant total must be positive", total_amount=total_amount)
    if start_time < 0 or cliff_duration < 0 or vesting_duration < 0:
        raise InvalidConfigError(
            "Schedule times must be non-negative",
            start_time=start_time, cliff_duration=cliff_duration, vesting_duration=vesting_duration,
        )
    if cliff_duration > vesting_duration:
        raise InvalidConfigError(
            "Cliff cannot be longer than the vesting duration",
            cliff_duration=cliff_duration, vesting_duration=vesting_duration,
        )
    # total * span must fit the working width for every point on the curve
    checked_mul(total_amount, max(vesting_duration - cliff_duration, 1))


class VestingLedger:
    """Holds vesting schedules keyed by (beneficiary, grant_id)."""

    def __init__(self, event_sink: Optional[Callable[[GuardEvent], None]] = None):
        self._schedules: Dict[ScheduleKey, VestingSchedule] = {}
        self._lock = threading.Lock()
        self._event_sink = event_sink

    def create_schedule(
        self,
        beneficiary: str,
        grant_id: str,
        total_amount: int,
        start_time: int,
        cliff_duration: int,
        vesting_duration: int,
    ) -> VestingSchedule:
        _validate_terms(total_amount, start_time, cliff_duration, vesting_duration)
        schedule = VestingSchedule(
            beneficiary=beneficiary,
            grant_id=grant_id,
            total_amount=total_amount,
            start_time=start_time,
            cliff_duration=cliff_duration,
            vesting_duration=vesting_duration,
        )
        key = (beneficiary, grant_id)
        with self._lock:
            if key in self._schedules:
                raise ScheduleExistsError(
                    f"Grant {grant_id} already exists for {beneficiary}",
                    beneficiary=beneficiary, grant_id=grant_id,
                )
            self._schedules[key] = schedule

        logger.info(f"Created vesting schedule for {beneficiary} grant {grant_id}: total={total_amount}, "
                    f"start={start_time}, cliff={cliff_duration}s, vesting={vesting_duration}s")
        self._emit(ScheduleCreated(beneficiary=beneficiary, grant_id=grant_id, total_amount=total_amount))
        return schedule.model_copy()

    def get_schedule(self, beneficiary: str, grant_id: str) -> VestingSchedule:
        with self._lock:
            return self._get(beneficiary, grant_id).model_copy()

    def schedules(self) -> List[VestingSchedule]:
        with self._lock:
            return [schedule.model_copy() for schedule in self._schedules.values()]

    def load_schedules(self, schedules: List[VestingSchedule]) -> None:
        """Replaces all schedules, e.g. when restoring a saved snapshot."""
        loaded: Dict[ScheduleKey, VestingSchedule] = {}
        for schedule in schedules:
            _validate_terms(schedule.total_amount, schedule.start_time,
                            schedule.cliff_duration, schedule.vesting_duration)
            if not 0 <= schedule.claimed_amount <= schedule.total_amount:
                raise InvalidConfigError(
                    "Claimed amount outside grant total",
                    beneficiary=schedule.beneficiary, grant_id=schedule.grant_id,
                )
            loaded[(schedule.beneficiary, schedule.grant_id)] = schedule.model_copy()
        with self._lock:
            self._schedules = loaded

    def vested_amount(self, beneficiary: str, grant_id: str, now: Optional[int] = None) -> int:
        if now is None:
            now = int(time.time())
        return vested_amount(self.get_schedule(beneficiary, grant_id), now)

    def claimable_amount(self, beneficiary: str, grant_id: str, now: Optional[int] = None) -> int:
        if now is None:
            now = int(time.time())
        return claimable_amount(self.get_schedule(beneficiary, grant_id), now)

    def schedule_state(self, beneficiary: str, grant_id: str, now: Optional[int] = None) -> VestingState:
        if now is None:
            now = int(time.time())
        return schedule_state(self.get_schedule(beneficiary, grant_id), now)

    def claim(self, beneficiary: str, grant_id: str, external_balance: int, now: Optional[int] = None) -> int:
        """Claims all vested tokens for the grant; see the module-level claim()."""
        if now is None:
            now = int(time.time())

        with self._lock:
            current = self._get(beneficiary, grant_id)
            updated = current.model_copy()
            try:
                payout = claim(updated, external_balance, now)
            except NothingToClaimError:
                logger.debug(f"Nothing to claim for {beneficiary} grant {grant_id}")
                raise
            except InsufficientVaultBalanceError as e:
                logger.warning(f"Claim rejected for {beneficiary} grant {grant_id}: {e}")
                raise
            self._schedules[(beneficiary, grant_id)] = updated

        remaining = checked_sub(updated.total_amount, updated.claimed_amount)
        logger.info(f"Claimed {payout} tokens for {beneficiary} grant {grant_id}; remaining {remaining}")
        self._emit(TokensClaimed(
            beneficiary=beneficiary, grant_id=grant_id, amount=payout,
            claimed_amount=updated.claimed_amount, timestamp=now,
        ))
        return payout

    def _get(self, beneficiary: str, grant_id: str) -> VestingSchedule:
        try:
            return self._schedules[(beneficiary, grant_id)]
        except KeyError:
            raise ScheduleNotFoundError(
                f"No vesting schedule for {beneficiary} grant {grant_id}",
                beneficiary=beneficiary, grant_id=grant_id,
            )

    def _emit(self, event: GuardEvent) -> None:
        if self._event_sink is not None:
            self._event_sink(event)
