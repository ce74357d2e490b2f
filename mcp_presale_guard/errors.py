"""
Custom Exception Classes for the Presale Guard

This module defines the exception hierarchy raised by the purchase guards and the
vesting ledger. Every guard reports its decision by raising; a returned value always
means the purchase or claim was accepted.

Exception Categories:
- Input Rejections: expected, recoverable outcomes (too frequent, stale price,
  nothing to claim...). The caller may retry later or adjust its input.
- Invariant Violations: programming or configuration defects (arithmetic overflow,
  invalid limits). These abort the whole operation and must never be treated as
  a no-op.
- Configuration Errors: raised while loading settings from the environment.

Each rejection carries a stable ``reason`` string plus the context the caller needs
(account, amount, limit...) in ``context``.
"""
from typing import Any, Dict


class PresaleGuardError(Exception):
    """Base class for all guard decisions and failures."""

    reason: str = "Error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context: Dict[str, Any] = context


class InputRejection(PresaleGuardError):
    """Raised when a request is rejected by one of the guards."""


class InvariantViolation(PresaleGuardError):
    """Raised when an internal consistency check fails."""


# --- Rate Guard ---

class TooFrequentError(InputRejection):
    """Raised when an account transacts before the minimum spacing has elapsed."""

    reason = "TooFrequent"


class AmountOutOfBoundsError(InputRejection):
    """Raised when the USD value of a purchase is outside the allowed range."""

    reason = "AmountOutOfBounds"


class TooManyTransactionsError(InputRejection):
    """Raised when an account has used up its transactions for the current period."""

    reason = "TooManyTransactions"


# --- Price Oracle ---

class StaleDataError(InputRejection):
    """Raised when the feed's last update is older than the allowed delay."""

    reason = "StaleData"


class InvalidRoundError(InputRejection):
    """Raised for incomplete feed rounds or a round id below the watermark."""

    reason = "InvalidRound"


class PriceOutOfBoundsError(InputRejection):
    """Raised when the reported price is outside the configured sanity range."""

    reason = "PriceOutOfBounds"


class NonPositivePriceError(InputRejection):
    """Raised when the feed reports a zero or negative price."""

    reason = "NonPositivePrice"


class PriceFeedError(InputRejection):
    """Raised when the price feed cannot be queried or returns malformed data."""

    reason = "FeedUnavailable"


# --- Vesting ---

class NothingToClaimError(InputRejection):
    """Raised when a claim finds no newly vested tokens."""

    reason = "NothingToClaim"


class InsufficientVaultBalanceError(InputRejection):
    """Raised when the vault holds fewer tokens than the claim would pay out."""

    reason = "InsufficientVaultBalance"


class ScheduleNotFoundError(InputRejection):
    """Raised when no schedule exists for a beneficiary and grant."""

    reason = "ScheduleNotFound"


class ScheduleExistsError(InputRejection):
    """Raised when a grant is created twice for the same beneficiary."""

    reason = "ScheduleExists"


class TokenBalanceError(InputRejection):
    """Raised when there are issues fetching token balance from the blockchain."""

    reason = "BalanceUnavailable"


# --- Purchase ---

class UnsupportedAssetError(InputRejection):
    """Raised when a purchase is paid with an asset the gate cannot price."""

    reason = "UnsupportedAsset"


# --- Invariant violations ---

class CalculationOverflowError(InvariantViolation):
    """Raised when fixed-width arithmetic overflows or a vested amount exceeds its grant."""

    reason = "CalculationOverflow"


class InvalidConfigError(InvariantViolation):
    """Raised when guard limits or schedule terms are not valid."""

    reason = "InvalidConfig"


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""
