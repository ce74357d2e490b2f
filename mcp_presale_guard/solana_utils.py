import httpx
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from mcp_presale_guard.errors import TokenBalanceError
from mcp_presale_guard.config import (
    RPC_ENDPOINT,
    TOKEN_MINT_ADDRESS,
    VAULT_OWNER_ADDRESS,
)
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# --- Token Account Utility ---

def get_vault_token_account(
    owner: Pubkey = VAULT_OWNER_ADDRESS,
    token_mint_address: Pubkey = TOKEN_MINT_ADDRESS,
) -> Pubkey:
    """Gets the associated token account holding the vesting vault's tokens."""
    return get_associated_token_address(owner, token_mint_address)

# --- Token Balance ---

async def get_token_balance(client: httpx.AsyncClient, account_pubkey: Pubkey, rpc_endpoint: str = RPC_ENDPOINT) -> int:
    """Get the token balance of a specific token account."""
    try:
        resp = await client.post(
            rpc_endpoint,
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "getTokenAccountBalance",
                "params": [str(account_pubkey), {"commitment": "confirmed"}],
            },
        )
        resp.raise_for_status()
        result = resp.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error fetching token balance for {account_pubkey}: {e.response.status_code} - {e.response.text}")
        raise TokenBalanceError(f"HTTP error fetching token balance: {e.response.status_code}", account=str(account_pubkey))
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error fetching token balance for {account_pubkey}: {e}")
        raise TokenBalanceError(f"Error fetching token balance: {e}", account=str(account_pubkey))

    if result.get("error"):
        raise TokenBalanceError(f"Error fetching token balance for {account_pubkey}: {result['error']}", account=str(account_pubkey))

    if not result.get("result") or "value" not in result["result"] or "amount" not in result["result"]["value"]:
        raise TokenBalanceError(f"Unexpected response format for token balance of {account_pubkey}", account=str(account_pubkey))

    return int(result["result"]["value"]["amount"])
