"""
Presale Guard Package Initialization

This package holds the safety checks of a token presale, exposed through the Model
Context Protocol (MCP). Every purchase passes a validated oracle price and a
per-account rate limit, and vested tokens are released by a ledger that never pays
out more than was granted or than the vault holds.

The package includes:
- Rate Guard: per-account purchase spacing, amount bounds and period caps
- Price Oracle Validator: staleness, round and bound checks on the price feed
- Vesting Ledger: linear vesting with cliff and balance-bounded claims
- Checked fixed-width arithmetic shared by the guards
- Custom error handling
- MCP server implementation for easy integration
"""
