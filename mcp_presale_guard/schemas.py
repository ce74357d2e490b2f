"""
Pydantic Data Models for the Presale Guard

This module defines the records owned by the guards, the transient price sample read
from the feed, the vesting schedule kept by the ledger, and the observability events
emitted on every accepted decision.

Key Components:
- RateRecord: Per-account rate-limit window (zero value for unseen accounts)
- RateLimitConfig / PurchaseBounds: Rate Guard limits
- OracleConfig: Price Oracle Validator limits
- PriceSample: One round read from the price feed
- VestingSchedule / VestingState: Per-grant linear vesting with cliff
- GuardEvent subclasses: Structured events for monitoring and audit

All amounts are integers in fixed-point units; see config for the conventions.
"""
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class RateRecord(BaseModel):
    last_transaction_time: int = 0
    transaction_count: int = 0
    period_start: int = 0
    total_volume_usd: int = 0


class RateLimitConfig(BaseModel):
    min_time_between_tx: int
    max_tx_per_period: int
    period: int


class PurchaseBounds(BaseModel):
    min_purchase_amount: int
    max_purchase_amount: int


class OracleConfig(BaseModel):
    max_oracle_delay: int = 3600
    min_price: int
    max_price: int
    feed_decimals: int = 8


class PriceSample(BaseModel):
    """A single round reported by the price feed."""

    raw_price: int
    updated_at: int
    round_id: int
    answered_in_round: Optional[int] = None

    @model_validator(mode="after")
    def _default_answered_in_round(self) -> "PriceSample":
        if self.answered_in_round is None:
            self.answered_in_round = self.round_id
        return self

    def is_stale(self, now: int, max_staleness: int) -> bool:
        return now - self.updated_at > max_staleness

    def is_in_bounds(self, min_price: int, max_price: int) -> bool:
        return min_price <= self.raw_price <= max_price

    @property
    def is_complete(self) -> bool:
        return self.updated_at != 0 and self.answered_in_round >= self.round_id


class VestingState(str, Enum):
    unvested = "unvested"
    partially_vested = "partially_vested"
    fully_vested = "fully_vested"
    fully_claimed = "fully_claimed"


class VestingSchedule(BaseModel):
    beneficiary: str
    grant_id: str
    total_amount: int
    start_time: int
    cliff_duration: int = 0
    vesting_duration: int
    claimed_amount: int = 0

    @property
    def cliff_end(self) -> int:
        return self.start_time + self.cliff_duration

    @property
    def vesting_end(self) -> int:
        return self.start_time + self.vesting_duration


# --- Events ---

class GuardEvent(BaseModel):
    event: str
    timestamp: Optional[int] = None


class TransactionChecked(GuardEvent):
    event: Literal["transaction_checked"] = "transaction_checked"
    account: str
    usd_amount: int
    transaction_count: int


class AccountReset(GuardEvent):
    event: Literal["account_reset"] = "account_reset"
    account: str


class RateConfigUpdated(GuardEvent):
    event: Literal["rate_config_updated"] = "rate_config_updated"
    min_time_between_tx: int
    max_tx_per_period: int
    period: int


class PurchaseBoundsUpdated(GuardEvent):
    event: Literal["purchase_bounds_updated"] = "purchase_bounds_updated"
    min_purchase_amount: int
    max_purchase_amount: int


class PriceValidated(GuardEvent):
    event: Literal["price_validated"] = "price_validated"
    round_id: int
    price: int


class ScheduleCreated(GuardEvent):
    event: Literal["schedule_created"] = "schedule_created"
    beneficiary: str
    grant_id: str
    total_amount: int


class TokensClaimed(GuardEvent):
    event: Literal["tokens_claimed"] = "tokens_claimed"
    beneficiary: str
    grant_id: str
    amount: int
    claimed_amount: int = Field(description="Cumulative amount claimed after this payout.")
