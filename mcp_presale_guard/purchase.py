"""
Purchase Gate

Runs the guards a purchase must pass, in order: validated oracle price, USD value of
the payment, Rate Guard check. Any rejection propagates and aborts the purchase; the
Rate Guard is only consulted once the price is known to be valid, so a rejected price
never consumes a rate-limit slot.
"""
import time
from typing import Optional

from pydantic import BaseModel

from mcp_presale_guard.oracle import PriceOracleValidator
from mcp_presale_guard.pricing import PaymentAsset, payment_to_usd, tokens_for_usd
from mcp_presale_guard.rate_limiter import RateGuard
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class PurchaseQuote(BaseModel):
    account: str
    asset: PaymentAsset
    payment_amount: int
    price: int
    usd_amount: int
    token_amount: int
    transaction_count: int
    timestamp: int


class PurchaseGate:
    def __init__(
        self,
        oracle: PriceOracleValidator,
        rate_guard: RateGuard,
        token_price_usd: int,
        token_decimals: int = 18,
    ):
        self.oracle = oracle
        self.rate_guard = rate_guard
        self.token_price_usd = token_price_usd
        self.token_decimals = token_decimals

    def authorize_purchase(
        self,
        account: str,
        asset: PaymentAsset,
        payment_amount: int,
        now: Optional[int] = None,
    ) -> PurchaseQuote:
        """
        Validates a purchase and returns the allocation it is entitled to.

        Raises:
            Any InputRejection from the oracle or the Rate Guard, or an
            InvariantViolation if the valuation overflows.
        """
        if now is None:
            now = int(time.time())

        price = self.oracle.get_validated_price(now)
        usd_amount = payment_to_usd(asset, payment_amount, price)
        token_amount = tokens_for_usd(usd_amount, self.token_price_usd, self.token_decimals)
        record = self.rate_guard.check_and_consume(account, usd_amount, now)

        logger.info(f"Purchase authorized for {account}: {payment_amount} {asset.value} base units, "
                    f"usd={usd_amount}, tokens={token_amount}, count={record.transaction_count}")
        return PurchaseQuote(
            account=account,
            asset=asset,
            payment_amount=payment_amount,
            price=price,
            usd_amount=usd_amount,
            token_amount=token_amount,
            transaction_count=record.transaction_count,
            timestamp=now,
        )
