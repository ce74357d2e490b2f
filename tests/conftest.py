import pytest

from mcp_presale_guard.oracle import PriceOracleValidator
from mcp_presale_guard.schemas import OracleConfig, PriceSample, PurchaseBounds, RateLimitConfig
from mcp_presale_guard.rate_limiter import RateGuard
from mcp_presale_guard.vesting import VestingLedger

NOW = 1710000000
ETH_PRICE = 3_000 * 10**8


class StaticFeed:
    """Feed stub returning a fixed sample (or raising a fixed error)."""

    def __init__(self, sample):
        self.sample = sample
        self.calls = 0

    def latest_round(self) -> PriceSample:
        self.calls += 1
        if isinstance(self.sample, Exception):
            raise self.sample
        return self.sample


def make_sample(price: int = ETH_PRICE, updated_at: int = NOW - 30, round_id: int = 100, **kwargs) -> PriceSample:
    return PriceSample(raw_price=price, updated_at=updated_at, round_id=round_id, **kwargs)


@pytest.fixture
def events():
    return []


@pytest.fixture
def rate_guard(events):
    return RateGuard(
        RateLimitConfig(min_time_between_tx=60, max_tx_per_period=3, period=3600),
        PurchaseBounds(min_purchase_amount=100, max_purchase_amount=50000),
        event_sink=events.append,
    )


@pytest.fixture
def oracle_config():
    return OracleConfig(
        max_oracle_delay=3600,
        min_price=1_000 * 10**8,
        max_price=10_000 * 10**8,
        feed_decimals=8,
    )


@pytest.fixture
def feed():
    return StaticFeed(make_sample())


@pytest.fixture
def oracle(feed, oracle_config, events):
    return PriceOracleValidator(feed, oracle_config, event_sink=events.append)


@pytest.fixture
def ledger(events):
    return VestingLedger(event_sink=events.append)
