"""
Price Oracle Validation

This module wraps the external price feed used to value purchases paid in a volatile
asset. Each call reads the latest round from the feed and rejects it unless it is
fresh, complete, not older than the last accepted round and within the configured
price range. Accepted prices are normalized to PRICE_DECIMALS (8) implied decimals.

Validation Order (first failure wins):
1. StaleData: now - updated_at > max_oracle_delay
2. InvalidRound: incomplete round, or round_id below the watermark
3. PriceOutOfBounds: raw price outside [min_price, max_price]
4. NonPositivePrice: raw price <= 0

The validator keeps no samples between calls. Its only state is the round-id
watermark, which is compared and advanced under a lock together with the decision,
so two concurrent validations cannot move it backwards. The feed is queried outside
the lock. No retries are performed; feed failures surface as PriceFeedError.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from mcp_presale_guard.config import PRICE_DECIMALS
from mcp_presale_guard.errors import (
    InvalidConfigError,
    InvalidRoundError,
    NonPositivePriceError,
    PriceFeedError,
    PriceOutOfBoundsError,
    StaleDataError,
)
from mcp_presale_guard.schemas import GuardEvent, OracleConfig, PriceSample, PriceValidated
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class PriceFeed(Protocol):
    def latest_round(self) -> PriceSample:
        ...


class HttpPriceFeed:
    """
    Reads the latest round from an HTTP endpoint serving a Chainlink-style
    ``latestRoundData`` document::

        {"roundId": 110680464442257320000, "answer": 345012000000,
         "updatedAt": 1717000000, "answeredInRound": 110680464442257320000}

    The document may also be wrapped in a JSON-RPC style ``{"result": {...}}``.
    """

    def __init__(self, url: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.url = url
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=5.0))

    def latest_round(self) -> PriceSample:
        try:
            resp = self._client.get(self.url)
            resp.raise_for_status()
            data: Dict[str, Any] = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching price feed {self.url}: {e.response.status_code} - {e.response.text}")
            raise PriceFeedError(f"HTTP error fetching price feed: {e.response.status_code}", url=self.url)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching price feed {self.url}: {e}")
            raise PriceFeedError(f"Error fetching price feed: {e}", url=self.url)

        if "result" in data:
            data = data["result"]
        try:
            return PriceSample(
                raw_price=int(data["answer"]),
                updated_at=int(data["updatedAt"]),
                round_id=int(data["roundId"]),
                answered_in_round=int(data["answeredInRound"]) if "answeredInRound" in data else None,
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.error(f"Malformed price feed response from {self.url}: {e}")
            raise PriceFeedError(f"Malformed price feed response: {e}", url=self.url)

    def close(self) -> None:
        self._client.close()


class PriceOracleValidator:
    """Validates feed rounds and tracks the highest accepted round id."""

    def __init__(
        self,
        feed: PriceFeed,
        config: OracleConfig,
        event_sink: Optional[Callable[[GuardEvent], None]] = None,
        round_watermark: Optional[int] = None,
    ):
        if config.max_oracle_delay <= 0 or config.min_price > config.max_price or config.feed_decimals < 0:
            raise InvalidConfigError("Invalid oracle configuration", **config.model_dump())
        self.feed = feed
        self.config = config
        self._event_sink = event_sink
        self._watermark = round_watermark
        self._lock = threading.Lock()

    @property
    def round_watermark(self) -> Optional[int]:
        with self._lock:
            return self._watermark

    def restore_watermark(self, round_id: Optional[int]) -> None:
        """Sets the watermark from a saved snapshot; only valid before any validation."""
        with self._lock:
            if self._watermark is not None:
                raise InvalidConfigError(
                    "Round watermark already set", watermark=self._watermark, round_id=round_id
                )
            self._watermark = round_id

    def get_validated_price(self, now: Optional[int] = None) -> int:
        """
        Fetches the latest feed round and returns its validated, normalized price.

        Args:
            now: Unix timestamp used for the staleness check; defaults to the current time.

        Returns:
            The price with PRICE_DECIMALS implied decimals.

        Raises:
            PriceFeedError, StaleDataError, InvalidRoundError,
            PriceOutOfBoundsError, NonPositivePriceError
        """
        sample = self.feed.latest_round()
        return self.validate_sample(sample, now)

    def validate_sample(self, sample: PriceSample, now: Optional[int] = None) -> int:
        """Validates a sample already read from the feed and advances the watermark."""
        if now is None:
            now = int(time.time())
        config = self.config

        with self._lock:
            if sample.is_stale(now, config.max_oracle_delay):
                logger.warning(f"Stale price data: updated_at={sample.updated_at}, now={now}, max delay={config.max_oracle_delay}")
                raise StaleDataError(
                    f"Price data is stale: last update {now - sample.updated_at}s ago (max {config.max_oracle_delay}s)",
                    updated_at=sample.updated_at, now=now, max_delay=config.max_oracle_delay,
                )

            if not sample.is_complete:
                logger.warning(f"Incomplete feed round {sample.round_id} (answered in {sample.answered_in_round})")
                raise InvalidRoundError(
                    f"Feed round {sample.round_id} is incomplete",
                    round_id=sample.round_id, answered_in_round=sample.answered_in_round,
                )
            if self._watermark is not None and sample.round_id < self._watermark:
                logger.warning(f"Feed round regressed: {sample.round_id} < {self._watermark}")
                raise InvalidRoundError(
                    f"Feed round {sample.round_id} is older than last accepted round {self._watermark}",
                    round_id=sample.round_id, watermark=self._watermark,
                )

            if not sample.is_in_bounds(config.min_price, config.max_price):
                logger.warning(f"Price {sample.raw_price} out of bounds [{config.min_price}, {config.max_price}]")
                raise PriceOutOfBoundsError(
                    f"Price {sample.raw_price} is outside [{config.min_price}, {config.max_price}]",
                    price=sample.raw_price, min_price=config.min_price, max_price=config.max_price,
                )

            if sample.raw_price <= 0:
                logger.warning(f"Non-positive price {sample.raw_price} in round {sample.round_id}")
                raise NonPositivePriceError(
                    f"Price {sample.raw_price} is not positive",
                    price=sample.raw_price, round_id=sample.round_id,
                )

            self._watermark = sample.round_id

        price = normalize_price(sample.raw_price, config.feed_decimals)
        logger.debug(f"Validated price {price} from round {sample.round_id}")
        if self._event_sink is not None:
            self._event_sink(PriceValidated(round_id=sample.round_id, price=price, timestamp=now))
        return price


def normalize_price(raw_price: int, feed_decimals: int) -> int:
    """Rescales a feed price to PRICE_DECIMALS implied decimals (truncating)."""
    if feed_decimals == PRICE_DECIMALS:
        return raw_price
    if feed_decimals < PRICE_DECIMALS:
        return raw_price * 10 ** (PRICE_DECIMALS - feed_decimals)
    return raw_price // 10 ** (feed_decimals - PRICE_DECIMALS)
