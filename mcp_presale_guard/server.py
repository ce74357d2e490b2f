"""
Presale Guard Server - MCP Server Implementation

This module exposes the presale safety guards as MCP tools. The purchase flow calls
`check_purchase` before finalizing a sale; beneficiaries call `claim_vested_tokens`
to learn how many vested tokens they may withdraw. Operators use the administrative
tools to tune limits and record grants.

Key Features:
- Oracle-validated valuation of ETH, USDC and USDT payments
- Per-account purchase rate limiting
- Linear vesting with cliff, bounded by the vault's on-chain balance
- JSON state snapshots (rate records, schedules, round watermark)

Security Features:
- Administrative tools require the operator key (ADMIN_API_KEY); the guards
  themselves are authorization-agnostic
- Rejections are returned with their reason; internal failures are logged with
  details and reported without them
- Invariant violations abort the operation and are never reported as success

License: MIT-0
"""

import asyncio
import hmac
import json
import time
import httpx

from pydantic import Field

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_presale_guard import config
from mcp_presale_guard import solana_utils
from mcp_presale_guard import state_store
from mcp_presale_guard.errors import InputRejection, InvariantViolation
from mcp_presale_guard.oracle import HttpPriceFeed, PriceOracleValidator
from mcp_presale_guard.pricing import PaymentAsset, format_token_amount
from mcp_presale_guard.purchase import PurchaseGate
from mcp_presale_guard.rate_limiter import RateGuard
from mcp_presale_guard.schemas import GuardEvent, OracleConfig, PurchaseBounds, RateLimitConfig
from mcp_presale_guard.vesting import VestingLedger

logger = get_logger(__name__)

MAX_ID_LENGTH = 100


def log_event(event: GuardEvent) -> None:
    """Event sink shared by all guards; writes one structured line per event."""
    logger.info(f"guard_event {event.model_dump_json(exclude_none=True)}")


# --- Guard Setup ---
rate_guard = RateGuard(
    RateLimitConfig(
        min_time_between_tx=config.MIN_TIME_BETWEEN_TX,
        max_tx_per_period=config.MAX_TX_PER_PERIOD,
        period=config.RATE_PERIOD,
    ),
    PurchaseBounds(
        min_purchase_amount=config.MIN_PURCHASE_USD,
        max_purchase_amount=config.MAX_PURCHASE_USD,
    ),
    event_sink=log_event,
)
price_feed = HttpPriceFeed(config.PRICE_FEED_URL)
oracle = PriceOracleValidator(
    price_feed,
    OracleConfig(
        max_oracle_delay=config.MAX_ORACLE_DELAY,
        min_price=config.MIN_ORACLE_PRICE,
        max_price=config.MAX_ORACLE_PRICE,
        feed_decimals=config.PRICE_FEED_DECIMALS,
    ),
    event_sink=log_event,
)
ledger = VestingLedger(event_sink=log_event)
purchase_gate = PurchaseGate(oracle, rate_guard, config.TOKEN_PRICE_USD, config.TOKEN_DECIMALS)

mcp = FastMCP(name="Presale Guard Server")


# --- Helper Functions ---

def validate_identifier(name: str, value: str) -> None:
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty string")
    if len(value) > MAX_ID_LENGTH:
        raise ValueError(f"{name} is too long")


def require_admin(admin_key: str) -> None:
    """Capability check for administrative tools."""
    if not config.ADMIN_API_KEY or not hmac.compare_digest(admin_key.encode(), config.ADMIN_API_KEY.encode()):
        raise PermissionError("Administrative key rejected")


def persist_state() -> bool:
    """
    Writes the current guard state to STATE_FILE, if persistence is enabled.

    Called after a decision has been committed in memory, so a failed write is logged
    and reported through the return value instead of raising: the caller must still
    report the committed purchase or payout.
    """
    if not config.STATE_FILE:
        return True
    try:
        state = state_store.snapshot(rate_guard, ledger, oracle.round_watermark)
        state_store.save_state(config.STATE_FILE, state)
        return True
    except Exception as e:
        logger.exception(f"Failed to persist guard state to {config.STATE_FILE}: {e}")
        return False


def format_rejection(e: InputRejection) -> str:
    return f"Rejected ({e.reason}): {e}"


def log_operation_error(operation: str, subject: str, error: Exception, duration: float) -> None:
    """Log operation error with structured information."""
    logger.error(f"{operation} failed for '{subject}': {error}, duration: {duration:.3f}s")


# --- Purchase Tools ---

@mcp.tool()
async def get_validated_price(context: Context) -> str:
    """Returns the current validated ETH/USD price (8 decimals)."""
    try:
        sample = await asyncio.to_thread(oracle.feed.latest_round)
        price = oracle.validate_sample(sample)
        return f"Validated price: {price} (8 decimals, round {sample.round_id})"
    except InputRejection as e:
        return format_rejection(e)
    except InvariantViolation as e:
        logger.exception(f"Invariant violation while validating price: {e}")
        return f"Internal error ({e.reason}): price validation aborted."
    except Exception as e:
        logger.exception(f"Unexpected error validating price: {e}")
        return "An unexpected server error occurred"


@mcp.tool()
async def check_purchase(
    context: Context,
    account: str = Field(..., description="The purchasing account."),
    asset: str = Field(..., description="Payment asset: ETH, USDC or USDT."),
    payment_amount: int = Field(..., description="Payment amount in the asset's base units."),
) -> str:
    """
    Runs the purchase guards for a payment and records it against the account's limits.

    The purchase must be aborted unless the response starts with "Purchase authorized".
    A rejection leaves every guard's state unchanged.

    Example:
        >>> await check_purchase(context=ctx, account="buyer-1", asset="USDT", payment_amount=100_000_000)
        "Purchase authorized for buyer-1: $100.000000 -> 2000.000000000000000000 tokens (purchase 1 this period)"
    """
    start_time = time.time()
    try:
        validate_identifier("Account", account)
        if not isinstance(payment_amount, int) or payment_amount <= 0:
            raise ValueError("Payment amount must be a positive integer")
        payment_asset = PaymentAsset(asset.upper())

        quote = await asyncio.to_thread(purchase_gate.authorize_purchase, account, payment_asset, payment_amount)
        persist_state()

        usd_display = format_token_amount(quote.usd_amount, config.USD_DECIMALS, "").strip()
        token_display = format_token_amount(quote.token_amount, config.TOKEN_DECIMALS, "tokens")
        return (f"Purchase authorized for {account}: ${usd_display} -> {token_display} "
                f"(purchase {quote.transaction_count} this period)")

    except InputRejection as e:
        log_operation_error("Purchase check", account, e, time.time() - start_time)
        return format_rejection(e)
    except InvariantViolation as e:
        logger.exception(f"Invariant violation during purchase check for {account}: {e}")
        return f"Internal error ({e.reason}): purchase aborted."
    except ValueError as e:
        log_operation_error("Purchase check", account, e, time.time() - start_time)
        return f"Error processing request: {e}"
    except Exception as e:
        log_operation_error("Purchase check", account, e, time.time() - start_time)
        return "An unexpected server error occurred"


@mcp.tool()
async def get_rate_record(
    context: Context,
    account: str = Field(..., description="The account to inspect."),
) -> str:
    """Returns the account's current rate-limit record as JSON."""
    try:
        validate_identifier("Account", account)
        return rate_guard.get_record(account).model_dump_json(indent=2)
    except ValueError as e:
        return f"Error: {e}"


# --- Vesting Tools ---

@mcp.tool()
async def get_vesting_status(
    context: Context,
    beneficiary: str = Field(..., description="The beneficiary of the grant."),
    grant_id: str = Field(..., description="The grant identifier."),
) -> str:
    """Returns the schedule together with its vested and claimable amounts."""
    try:
        validate_identifier("Beneficiary", beneficiary)
        validate_identifier("Grant ID", grant_id)
        now = int(time.time())
        schedule = ledger.get_schedule(beneficiary, grant_id)
        status = schedule.model_dump(mode="json")
        status["vested_amount"] = ledger.vested_amount(beneficiary, grant_id, now)
        status["claimable_amount"] = ledger.claimable_amount(beneficiary, grant_id, now)
        status["state"] = ledger.schedule_state(beneficiary, grant_id, now).value
        return json.dumps(status, indent=2)
    except InputRejection as e:
        return format_rejection(e)
    except InvariantViolation as e:
        logger.exception(f"Invariant violation reading schedule {beneficiary}/{grant_id}: {e}")
        return f"Internal error ({e.reason}): status unavailable."
    except ValueError as e:
        return f"Error: {e}"


@mcp.tool()
async def claim_vested_tokens(
    context: Context,
    beneficiary: str = Field(..., description="The beneficiary of the grant."),
    grant_id: str = Field(..., description="The grant identifier."),
) -> str:
    """
    Claims all vested tokens of a grant.

    The vault's token balance is read from the chain first; the claim is rejected
    without any change if the vault cannot cover it. On success the returned amount
    must be transferred to the beneficiary by the custody service.
    """
    start_time = time.time()
    async with httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0)) as client:
        try:
            validate_identifier("Beneficiary", beneficiary)
            validate_identifier("Grant ID", grant_id)

            vault_balance = await solana_utils.get_token_balance(client, solana_utils.get_vault_token_account())
            payout = ledger.claim(beneficiary, grant_id, vault_balance)
            persist_state()

            token_display = format_token_amount(payout, config.TOKEN_DECIMALS, "tokens")
            logger.info(f"Claim completed for {beneficiary}/{grant_id}: {token_display}, "
                        f"duration={time.time() - start_time:.3f}s")
            return f"Claimed {token_display} for {beneficiary} (grant {grant_id}); payout amount: {payout}"

        except InputRejection as e:
            log_operation_error("Claim", f"{beneficiary}/{grant_id}", e, time.time() - start_time)
            return format_rejection(e)
        except InvariantViolation as e:
            logger.exception(f"Invariant violation during claim for {beneficiary}/{grant_id}: {e}")
            return f"Internal error ({e.reason}): claim aborted."
        except ValueError as e:
            return f"Error: {e}"
        except Exception as e:
            log_operation_error("Claim", f"{beneficiary}/{grant_id}", e, time.time() - start_time)
            return "An unexpected server error occurred"


# --- Administrative Tools ---

@mcp.tool()
async def reset_rate_record(
    context: Context,
    admin_key: str = Field(..., description="Operator key."),
    account: str = Field(..., description="The account whose record is cleared."),
) -> str:
    """Clears an account's rate-limit record."""
    try:
        require_admin(admin_key)
        validate_identifier("Account", account)
        existed = rate_guard.reset_account(account)
        persist_state()
        return f"Rate record for {account} reset." if existed else f"No rate record for {account}."
    except PermissionError as e:
        logger.warning(f"Unauthorized reset_rate_record attempt for {account}")
        return f"Unauthorized: {e}"
    except ValueError as e:
        return f"Error: {e}"


@mcp.tool()
async def update_rate_limits(
    context: Context,
    admin_key: str = Field(..., description="Operator key."),
    min_time_between_tx: int = Field(..., description="Minimum seconds between purchases of one account."),
    max_tx_per_period: int = Field(..., description="Purchases allowed per account per period."),
    period: int = Field(..., description="Period length in seconds."),
) -> str:
    """Updates the Rate Guard's spacing, count and period limits."""
    try:
        require_admin(admin_key)
        limits = rate_guard.update_config(min_time_between_tx, max_tx_per_period, period)
        return f"Rate limits updated: {limits.model_dump_json()}"
    except PermissionError as e:
        logger.warning("Unauthorized update_rate_limits attempt")
        return f"Unauthorized: {e}"
    except InvariantViolation as e:
        logger.error(f"Rejected rate limit update: {e}")
        return f"Error ({e.reason}): {e}"


@mcp.tool()
async def update_purchase_bounds(
    context: Context,
    admin_key: str = Field(..., description="Operator key."),
    min_purchase_amount: int = Field(..., description="Minimum USD value per purchase (6 decimals)."),
    max_purchase_amount: int = Field(..., description="Maximum USD value per purchase (6 decimals)."),
) -> str:
    """Updates the USD bounds of a single purchase."""
    try:
        require_admin(admin_key)
        bounds = rate_guard.update_purchase_bounds(min_purchase_amount, max_purchase_amount)
        return f"Purchase bounds updated: {bounds.model_dump_json()}"
    except PermissionError as e:
        logger.warning("Unauthorized update_purchase_bounds attempt")
        return f"Unauthorized: {e}"
    except InvariantViolation as e:
        logger.error(f"Rejected purchase bounds update: {e}")
        return f"Error ({e.reason}): {e}"


@mcp.tool()
async def create_vesting_schedule(
    context: Context,
    admin_key: str = Field(..., description="Operator key."),
    beneficiary: str = Field(..., description="The beneficiary of the grant."),
    grant_id: str = Field(..., description="The grant identifier, unique per beneficiary."),
    total_amount: int = Field(..., description="Granted tokens in base units."),
    start_time: int = Field(..., description="Vesting start (Unix timestamp)."),
    cliff_duration: int = Field(0, description="Cliff length in seconds."),
    vesting_duration: int = Field(..., description="Total vesting length in seconds, cliff included."),
) -> str:
    """Records a new vesting grant."""
    try:
        require_admin(admin_key)
        validate_identifier("Beneficiary", beneficiary)
        validate_identifier("Grant ID", grant_id)
        schedule = ledger.create_schedule(
            beneficiary, grant_id, total_amount, start_time, cliff_duration, vesting_duration
        )
        persist_state()
        return f"Vesting schedule created: {schedule.model_dump_json()}"
    except PermissionError as e:
        logger.warning(f"Unauthorized create_vesting_schedule attempt for {beneficiary}")
        return f"Unauthorized: {e}"
    except InputRejection as e:
        return format_rejection(e)
    except InvariantViolation as e:
        logger.error(f"Rejected vesting schedule for {beneficiary}/{grant_id}: {e}")
        return f"Error ({e.reason}): {e}"
    except ValueError as e:
        return f"Error: {e}"


def load_persisted_state() -> None:
    """Restores guard state from STATE_FILE, if persistence is enabled."""
    if not config.STATE_FILE:
        return
    state = state_store.load_state(config.STATE_FILE)
    state_store.restore(state, rate_guard, ledger)
    oracle.restore_watermark(state.round_watermark)


# --- Main Execution ---
if __name__ == "__main__":
    startup_start = time.time()
    logger.info("Starting Presale Guard MCP Server...")
    load_persisted_state()
    startup_duration = time.time() - startup_start
    logger.info(f"Server startup completed in {startup_duration:.3f}s, "
                f"tracking {len(rate_guard.records())} account(s) and {len(ledger.schedules())} schedule(s).")

    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    finally:
        persist_state()
        price_feed.close()
        logger.info("Server stopped")
