"""
Purchase Valuation

This module converts a payment into its USD value and a USD value into a token
allocation, using integer fixed-point arithmetic throughout.

Units:
- ETH payments are in wei (18 decimals) and valued with the validated oracle price
  (PRICE_DECIMALS = 8)
- USDC / USDT payments are in 6-decimal base units and valued 1:1
- USD amounts are returned with USD_DECIMALS (6)
- Token allocations are returned in the token's smallest unit

Example:
    A $100 USDT payment at a token price of $0.05 (50_000 with 6 decimals) buys
    2,000 tokens, i.e. 2_000 * 10**18 base units of an 18-decimal token.
"""
from enum import Enum

from mcp_presale_guard.checked_math import mul_div
from mcp_presale_guard.config import PRICE_DECIMALS, USD_DECIMALS
from mcp_presale_guard.errors import InvalidConfigError, UnsupportedAssetError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

ETH_DECIMALS = 18
STABLECOIN_DECIMALS = 6


class PaymentAsset(str, Enum):
    eth = "ETH"
    usdc = "USDC"
    usdt = "USDT"


def payment_to_usd(asset: PaymentAsset, amount: int, price: int) -> int:
    """
    Values a payment in USD.

    Args:
        asset: The asset the payment was made in.
        amount: Payment amount in the asset's base units.
        price: Validated USD price of ETH with PRICE_DECIMALS decimals (ignored for stablecoins).

    Returns:
        The USD value with USD_DECIMALS decimals.
    """
    if amount < 0:
        raise InvalidConfigError(f"Payment amount must be non-negative: {amount}", amount=amount)

    if asset == PaymentAsset.eth:
        usd = mul_div(amount, price, 10 ** (ETH_DECIMALS + PRICE_DECIMALS - USD_DECIMALS))
    elif asset in (PaymentAsset.usdc, PaymentAsset.usdt):
        usd = mul_div(amount, 10**USD_DECIMALS, 10**STABLECOIN_DECIMALS)
    else:
        raise UnsupportedAssetError(f"Unsupported payment asset: {asset}", asset=str(asset))

    logger.debug(f"Valued {amount} {asset.value} base units at {usd} USD units (price={price})")
    return usd


def tokens_for_usd(usd_amount: int, token_price_usd: int, token_decimals: int = 18) -> int:
    """Returns the token allocation, in base units, bought by `usd_amount`."""
    if token_price_usd <= 0:
        raise InvalidConfigError(f"Token price must be positive: {token_price_usd}", token_price_usd=token_price_usd)
    return mul_div(usd_amount, 10**token_decimals, token_price_usd)


def format_token_amount(amount: int, decimals: int, symbol: str) -> str:
    """Format token amount with proper decimal places and symbol."""
    whole, frac = divmod(amount, 10**decimals)
    if decimals == 0:
        return f"{whole} {symbol}"
    return f"{whole}.{frac:0{decimals}d} {symbol}"
