"""
IDO Launchpad Package Initialization

This package provides a token-sale (IDO) launchpad exposed over the Model
Context Protocol (MCP). A pool collects purchase-token deposits from many
participants against a fixed hard cap, then settles on a later date how much
of the supply-token allocation and how much refund each participant receives.

The package includes:
- A period-gated pool state machine with admin control and pausing
- Whitelist-protected minimum allocations
- A post-hoc integer pro-rata allocation engine for oversubscribed sales
- Claim and withdrawal settlement tolerant to rounding dust
- An in-memory ledger and a Solana ledger gateway
- MCP server and HTTP action API front ends
"""
