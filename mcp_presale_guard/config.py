import os
import logging
from typing import Optional
from solders.pubkey import Pubkey
from dotenv import load_dotenv

# Import custom errors
from mcp_presale_guard.errors import ConfigurationError

"""
Configuration Management for the Presale Guard

This module loads every limit used by the purchase guards and the vesting ledger from
environment variables, with defaults matching the private-sale deployment. All price
and amount bounds are configuration rather than hardcoded policy, so a different sale
asset only needs a different environment.

Configuration Sources (in order of precedence):
1. Environment variables (a local .env file is loaded first)
2. Default values defined in this module

Fixed-point conventions:
- Prices are integers with PRICE_DECIMALS (8) implied decimals
- USD amounts are integers with USD_DECIMALS (6) implied decimals
- Token amounts are integers in the token's smallest unit (TOKEN_DECIMALS)

Environment Variables:
    RPC_ENDPOINT: Solana RPC endpoint URL used for vault balance queries
    PRICE_FEED_URL: HTTP endpoint returning the latest feed round as JSON
    PRICE_FEED_DECIMALS: Decimals reported by the feed (0-18)
    MAX_ORACLE_DELAY: Maximum age of a price sample, in seconds
    MIN_ORACLE_PRICE / MAX_ORACLE_PRICE: Accepted raw price range
    MIN_TIME_BETWEEN_TX: Minimum spacing between purchases of one account, in seconds
    MAX_TX_PER_PERIOD: Purchases allowed per account per period
    RATE_PERIOD: Length of the rate-limit period, in seconds
    MIN_PURCHASE_USD / MAX_PURCHASE_USD: Accepted USD value of a single purchase
    TOKEN_PRICE_USD: Sale price of one token in USD (6 decimals)
    TOKEN_MINT_ADDRESS: Mint of the token held by the vesting vault
    TOKEN_DECIMALS: Decimals of the sale token (0-18)
    VAULT_OWNER_ADDRESS: Owner of the vault's associated token account
    ADMIN_API_KEY: Operator key required by administrative tools
    STATE_FILE: Path of the JSON snapshot holding guard state (empty disables persistence)
"""

# Set up logger
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

PRICE_DECIMALS = 8
USD_DECIMALS = 6


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_pubkey(key: str, default: str) -> Pubkey:
    """Get environment variable as Pubkey with validation."""
    try:
        value = os.getenv(key, default)
        return Pubkey.from_string(value)
    except Exception as e:
        raise ConfigurationError(f"Environment variable {key} must be a valid public key: {e}")


try:
    # --- Solana Configuration ---
    RPC_ENDPOINT = _get_env_str("RPC_ENDPOINT", "http://localhost:8899", required=True)

    # --- Token / Vault Configuration ---
    TOKEN_MINT_ADDRESS = _get_env_pubkey("TOKEN_MINT_ADDRESS", "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
    TOKEN_DECIMALS = _get_env_int("TOKEN_DECIMALS", 18, min_val=0, max_val=18)
    VAULT_OWNER_ADDRESS = _get_env_pubkey("VAULT_OWNER_ADDRESS", "11111111111111111111111111111111")
    TOKEN_PRICE_USD = _get_env_int("TOKEN_PRICE_USD", 50_000, min_val=1)

    # --- Price Oracle ---
    PRICE_FEED_URL = _get_env_str("PRICE_FEED_URL", "http://localhost:8080/eth-usd/latest")
    PRICE_FEED_DECIMALS = _get_env_int("PRICE_FEED_DECIMALS", PRICE_DECIMALS, min_val=0, max_val=18)
    MAX_ORACLE_DELAY = _get_env_int("MAX_ORACLE_DELAY", 3600, min_val=1)
    MIN_ORACLE_PRICE = _get_env_int("MIN_ORACLE_PRICE", 1_000 * 10**PRICE_DECIMALS, min_val=0)
    MAX_ORACLE_PRICE = _get_env_int("MAX_ORACLE_PRICE", 10_000 * 10**PRICE_DECIMALS, min_val=1)

    # --- Rate Limiting ---
    MIN_TIME_BETWEEN_TX = _get_env_int("MIN_TIME_BETWEEN_TX", 60, min_val=1)
    MAX_TX_PER_PERIOD = _get_env_int("MAX_TX_PER_PERIOD", 10, min_val=1)
    RATE_PERIOD = _get_env_int("RATE_PERIOD", 86_400, min_val=1)
    MIN_PURCHASE_USD = _get_env_int("MIN_PURCHASE_USD", 100 * 10**USD_DECIMALS, min_val=1)
    MAX_PURCHASE_USD = _get_env_int("MAX_PURCHASE_USD", 50_000 * 10**USD_DECIMALS, min_val=1)

    # --- Administration / Persistence ---
    ADMIN_API_KEY = _get_env_str("ADMIN_API_KEY", "")
    STATE_FILE = _get_env_str("STATE_FILE", "")

    if MIN_ORACLE_PRICE > MAX_ORACLE_PRICE:
        raise ConfigurationError("MIN_ORACLE_PRICE must not exceed MAX_ORACLE_PRICE")
    if MIN_PURCHASE_USD > MAX_PURCHASE_USD:
        raise ConfigurationError("MIN_PURCHASE_USD must not exceed MAX_PURCHASE_USD")
    if not ADMIN_API_KEY:
        logger.warning("ADMIN_API_KEY is not set; administrative tools are disabled.")

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
except Exception as e:
    logger.error(f"Unexpected error loading configuration: {e}")
    raise ConfigurationError(f"Failed to load configuration: {e}")
