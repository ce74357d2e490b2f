from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from mcp_presale_guard.errors import (
    CalculationOverflowError,
    InsufficientVaultBalanceError,
    InvalidConfigError,
    InvariantViolation,
    NothingToClaimError,
    ScheduleExistsError,
    ScheduleNotFoundError,
)
from mcp_presale_guard.schemas import ScheduleCreated, TokensClaimed, VestingSchedule, VestingState
from mcp_presale_guard.vesting import claim, schedule_state, vested_amount

MONTH = 30 * 24 * 60 * 60
YEAR = 365 * 24 * 60 * 60
START = 1710000000


def make_schedule(**kwargs) -> VestingSchedule:
    terms = dict(
        beneficiary="alice",
        grant_id="private-sale",
        total_amount=1_000_000,
        start_time=1_000,
        cliff_duration=100,
        vesting_duration=1_000,
    )
    terms.update(kwargs)
    return VestingSchedule(**terms)


def test_linear_vesting_without_cliff():
    schedule = make_schedule(start_time=0, cliff_duration=0, vesting_duration=1000)
    assert vested_amount(schedule, 500) == 500_000
    assert vested_amount(schedule, 0) == 0
    assert vested_amount(schedule, 999) == 999_000
    assert vested_amount(schedule, 1000) == 1_000_000


def test_cliff_and_end_boundaries():
    schedule = make_schedule()
    assert vested_amount(schedule, 0) == 0
    assert vested_amount(schedule, schedule.start_time + schedule.cliff_duration - 1) == 0
    assert vested_amount(schedule, schedule.start_time + schedule.cliff_duration) == 0
    assert vested_amount(schedule, 1_550) == 500_000
    assert vested_amount(schedule, schedule.start_time + schedule.vesting_duration) == 1_000_000
    assert vested_amount(schedule, 10**12) == 1_000_000


def test_vested_amount_is_monotonic_and_bounded():
    schedule = make_schedule(total_amount=10**24 + 7, start_time=START, cliff_duration=6 * MONTH, vesting_duration=YEAR)
    previous = 0
    for now in range(START - MONTH, START + YEAR + MONTH, 86_399):
        vested = vested_amount(schedule, now)
        assert previous <= vested <= schedule.total_amount
        previous = vested
    assert previous == schedule.total_amount


def test_cliff_equal_to_vesting_releases_everything_at_end():
    schedule = make_schedule(cliff_duration=1_000, vesting_duration=1_000)
    assert vested_amount(schedule, 1_999) == 0
    assert vested_amount(schedule, 2_000) == 1_000_000


def test_intermediate_product_overflow_is_fatal():
    schedule = make_schedule(total_amount=2**255, start_time=0, cliff_duration=0, vesting_duration=4)
    with pytest.raises(CalculationOverflowError) as exc_info:
        vested_amount(schedule, 2)
    assert isinstance(exc_info.value, InvariantViolation)


def test_vested_above_total_is_fatal():
    schedule = make_schedule()
    with patch("mcp_presale_guard.vesting.mul_div", return_value=schedule.total_amount + 1):
        with pytest.raises(CalculationOverflowError):
            vested_amount(schedule, 1_500)


def test_claim_pays_out_claimable():
    schedule = make_schedule()
    assert claim(schedule, 10**9, 1_550) == 500_000
    assert schedule.claimed_amount == 500_000
    assert claim(schedule, 10**9, 2_000) == 500_000
    assert schedule.claimed_amount == 1_000_000


def test_schedule_states():
    schedule = make_schedule()
    assert schedule_state(schedule, 1_050) == VestingState.unvested
    assert schedule_state(schedule, 1_100) == VestingState.partially_vested
    claim(schedule, 10**9, 1_500)
    assert schedule_state(schedule, 1_500) == VestingState.partially_vested
    assert schedule_state(schedule, 2_000) == VestingState.fully_vested
    claim(schedule, 10**9, 2_000)
    assert schedule_state(schedule, 2_000) == VestingState.fully_claimed
    assert schedule_state(schedule, 10**9) == VestingState.fully_claimed


# --- VestingLedger ---

@pytest.fixture
def grant(ledger):
    return ledger.create_schedule("alice", "private-sale", 1_000_000, 1_000, 100, 1_000)


def test_create_schedule(ledger, grant, events):
    assert grant.claimed_amount == 0
    assert ledger.get_schedule("alice", "private-sale") == grant
    assert events == [ScheduleCreated(beneficiary="alice", grant_id="private-sale", total_amount=1_000_000)]


def test_duplicate_schedule_is_rejected(ledger, grant):
    with pytest.raises(ScheduleExistsError):
        ledger.create_schedule("alice", "private-sale", 5, 0, 0, 10)
    ledger.create_schedule("alice", "seed", 5, 0, 0, 10)
    ledger.create_schedule("bob", "private-sale", 5, 0, 0, 10)
    assert len(ledger.schedules()) == 3


@pytest.mark.parametrize("terms", [
    (0, 0, 0, 10),
    (100, -1, 0, 10),
    (100, 0, 11, 10),
    (100, 0, -5, 10),
    (2**255, 0, 0, 10),
])
def test_invalid_terms_are_rejected(ledger, terms):
    with pytest.raises(InvariantViolation):
        ledger.create_schedule("alice", "bad", *terms)
    with pytest.raises(ScheduleNotFoundError):
        ledger.get_schedule("alice", "bad")


def test_unknown_schedule(ledger):
    with pytest.raises(ScheduleNotFoundError):
        ledger.claim("nobody", "none", 100, now=START)
    with pytest.raises(ScheduleNotFoundError):
        ledger.vested_amount("nobody", "none", now=START)


def test_claims_sum_to_vested_amount(ledger, grant):
    total = 0
    for now in (1_101, 1_237, 1_500, 1_501, 1_999):
        total += ledger.claim("alice", "private-sale", 10**9, now=now)
        assert total == ledger.vested_amount("alice", "private-sale", now=now)
    assert ledger.get_schedule("alice", "private-sale").claimed_amount == total


def test_second_claim_at_same_time_has_nothing(ledger, grant):
    assert ledger.claim("alice", "private-sale", 10**9, now=1_500) == 444_444
    with pytest.raises(NothingToClaimError):
        ledger.claim("alice", "private-sale", 10**9, now=1_500)


def test_claim_before_cliff_has_nothing(ledger, grant):
    with pytest.raises(NothingToClaimError):
        ledger.claim("alice", "private-sale", 10**9, now=1_099)
    assert ledger.schedule_state("alice", "private-sale", now=1_099) == VestingState.unvested


def test_insufficient_vault_balance_leaves_schedule_unchanged(ledger, grant, events):
    with pytest.raises(InsufficientVaultBalanceError) as exc_info:
        ledger.claim("alice", "private-sale", 499_999, now=1_550)
    assert exc_info.value.context["amount"] == 500_000
    assert exc_info.value.context["balance"] == 499_999
    assert ledger.get_schedule("alice", "private-sale").claimed_amount == 0
    assert not any(isinstance(event, TokensClaimed) for event in events)

    assert ledger.claim("alice", "private-sale", 500_000, now=1_550) == 500_000


def test_fully_claimed_schedule_rejects_further_claims(ledger, grant, events):
    assert ledger.claim("alice", "private-sale", 10**9, now=5_000) == 1_000_000
    assert events[-1] == TokensClaimed(
        beneficiary="alice", grant_id="private-sale", amount=1_000_000,
        claimed_amount=1_000_000, timestamp=5_000,
    )
    with pytest.raises(NothingToClaimError):
        ledger.claim("alice", "private-sale", 10**9, now=10**9)
    assert ledger.schedule_state("alice", "private-sale", now=10**9) == VestingState.fully_claimed
    assert len(ledger.schedules()) == 1


def test_claimable_amount(ledger, grant):
    assert ledger.claimable_amount("alice", "private-sale", now=1_550) == 500_000
    ledger.claim("alice", "private-sale", 10**9, now=1_550)
    assert ledger.claimable_amount("alice", "private-sale", now=1_550) == 0
    assert ledger.claimable_amount("alice", "private-sale", now=1_640) == 100_000


def test_returned_schedule_is_a_copy(ledger, grant):
    schedule = ledger.get_schedule("alice", "private-sale")
    schedule.claimed_amount = 999_999
    assert ledger.get_schedule("alice", "private-sale").claimed_amount == 0


def test_load_schedules_validates_claimed_amount(ledger):
    with pytest.raises(InvalidConfigError):
        ledger.load_schedules([make_schedule(claimed_amount=2_000_000)])
    ledger.load_schedules([make_schedule(claimed_amount=10)])
    assert ledger.get_schedule("alice", "private-sale").claimed_amount == 10


def test_concurrent_claims_pay_out_once(ledger, grant):
    def attempt(_):
        try:
            return ledger.claim("alice", "private-sale", 10**9, now=1_550)
        except NothingToClaimError:
            return 0

    with ThreadPoolExecutor(max_workers=8) as pool:
        payouts = list(pool.map(attempt, range(32)))

    assert sum(payouts) == 500_000
    assert ledger.get_schedule("alice", "private-sale").claimed_amount == 500_000


def test_private_sale_schedule():
    # 6 month cliff, 12 month vesting, as configured for the private sale round
    schedule = make_schedule(total_amount=2_000 * 10**18, start_time=START,
                             cliff_duration=180 * 86_400, vesting_duration=YEAR)
    assert vested_amount(schedule, START + 180 * 86_400 - 1) == 0
    halfway = START + 180 * 86_400 + (YEAR - 180 * 86_400) // 2
    assert vested_amount(schedule, halfway) == 1_000 * 10**18
    assert vested_amount(schedule, START + YEAR) == 2_000 * 10**18
