import pytest

from mcp_presale_guard.errors import (
    AmountOutOfBoundsError,
    PriceFeedError,
    StaleDataError,
    TooFrequentError,
)
from mcp_presale_guard.pricing import PaymentAsset
from mcp_presale_guard.purchase import PurchaseGate
from mcp_presale_guard.rate_limiter import RateGuard
from mcp_presale_guard.schemas import PurchaseBounds, RateLimitConfig, RateRecord
from tests.conftest import ETH_PRICE, NOW, make_sample


@pytest.fixture
def usd_rate_guard():
    return RateGuard(
        RateLimitConfig(min_time_between_tx=60, max_tx_per_period=10, period=86_400),
        PurchaseBounds(min_purchase_amount=100 * 10**6, max_purchase_amount=50_000 * 10**6),
    )


@pytest.fixture
def gate(oracle, usd_rate_guard):
    return PurchaseGate(oracle, usd_rate_guard, token_price_usd=50_000, token_decimals=18)


def test_usdt_purchase(gate, usd_rate_guard):
    quote = gate.authorize_purchase("buyer", PaymentAsset.usdt, 100 * 10**6, now=NOW)
    assert quote.usd_amount == 100 * 10**6
    assert quote.token_amount == 2_000 * 10**18
    assert quote.price == ETH_PRICE
    assert quote.transaction_count == 1
    assert usd_rate_guard.get_record("buyer").total_volume_usd == 100 * 10**6


def test_eth_purchase(gate):
    quote = gate.authorize_purchase("buyer", PaymentAsset.eth, 10**17, now=NOW)
    assert quote.usd_amount == 300 * 10**6
    assert quote.token_amount == 6_000 * 10**18


def test_invalid_price_does_not_consume_rate_limit(gate, feed, usd_rate_guard):
    feed.sample = make_sample(updated_at=NOW - 4000)
    with pytest.raises(StaleDataError):
        gate.authorize_purchase("buyer", PaymentAsset.usdt, 100 * 10**6, now=NOW)
    assert usd_rate_guard.get_record("buyer") == RateRecord()

    feed.sample = PriceFeedError("feed down")
    with pytest.raises(PriceFeedError):
        gate.authorize_purchase("buyer", PaymentAsset.usdt, 100 * 10**6, now=NOW)
    assert usd_rate_guard.get_record("buyer") == RateRecord()


def test_rate_guard_rejection_aborts_purchase(gate):
    with pytest.raises(AmountOutOfBoundsError):
        gate.authorize_purchase("buyer", PaymentAsset.usdt, 99 * 10**6, now=NOW)

    gate.authorize_purchase("buyer", PaymentAsset.usdt, 100 * 10**6, now=NOW)
    with pytest.raises(TooFrequentError):
        gate.authorize_purchase("buyer", PaymentAsset.usdt, 100 * 10**6, now=NOW + 30)
