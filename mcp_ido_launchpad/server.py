"""
IDO Launchpad Server - MCP Server Implementation

This module exposes the launchpad's pool operations as MCP tools. Clients (an
operator console, a wallet, an agent) create and configure pools, purchase
during the IDO period and settle claims and withdrawals afterwards.

Key Features:
- Every entry operation of a pool (create, admin management, pause, supply
  deposit, configuration, whitelist, ready, purchase, claim, withdraw)
- Query tools returning JSON: pool views, admins, claimable amounts
- In-memory ledger for development or a Solana ledger gateway
- Per-caller rate limiting of mutating tools
- Purchases and deposits verified against the payment transaction that funded them
- Structured logging; failures reported with their error code

Security Features:
- Every mutating tool requires a message signed by the key of its actor
  (see auth.py); replays and stale signatures are rejected
- Addresses validated as Solana public keys before reaching the core
- Rate limiting per caller address
- Unexpected errors are logged but never echoed back to the client
- Settlement shortfalls above tolerance logged at critical level
"""

import asyncio
import json
import time
from typing import Callable, List, Optional, TypeVar

from pydantic import Field
from solders.pubkey import Pubkey

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_ido_launchpad import config
from mcp_ido_launchpad.auth import ActionVerifier
from mcp_ido_launchpad.errors import (
    LaunchpadError,
    RateLimitExceededError,
    ToleranceExceededError,
    TransferFailedError,
    ValidationError,
)
from mcp_ido_launchpad.launchpad import Launchpad
from mcp_ido_launchpad.ledger import InMemoryLedger
from mcp_ido_launchpad.pool_store import PoolStore
from mcp_ido_launchpad.rate_limiter import RateLimiter

logger = get_logger(__name__)

MAX_AMOUNT = 10**18
MAX_BATCH_SIZE = 500

T = TypeVar("T")


def build_launchpad() -> Launchpad:
    """Builds the launchpad from configuration."""
    if config.LEDGER_BACKEND == "solana":
        from mcp_ido_launchpad.solana_gateway import SolanaLedgerGateway
        gateway = SolanaLedgerGateway()
    else:
        gateway = InMemoryLedger()
    store = PoolStore(config.POOL_STATE_DIR) if config.POOL_STATE_DIR else None
    logger.info(f"Launchpad using {config.LEDGER_BACKEND} ledger, snapshots in {config.POOL_STATE_DIR or 'memory only'}")
    return Launchpad(gateway, store=store, tolerance=config.TRANSFER_TOLERANCE)


# --- Server Setup ---
mcp = FastMCP(name="IDO Launchpad Server")
launchpad = build_launchpad()
rate_limiter = RateLimiter()
verifier = ActionVerifier()


# --- Helper Functions ---

def validate_address(value: str, field: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} must be a non-empty string")
    try:
        return str(Pubkey.from_string(value.strip()))
    except ValueError:
        raise ValidationError(f"{field} is not a valid address: {value}")


def validate_addresses(values: List[str], field: str) -> List[str]:
    if not values:
        raise ValidationError(f"{field} must not be empty")
    if len(values) > MAX_BATCH_SIZE:
        raise ValidationError(f"{field} has too many entries (max {MAX_BATCH_SIZE})")
    return [validate_address(v, field) for v in values]


def validate_amount(value: int, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")
    return value


def check_rate_limit(caller: str) -> None:
    if not rate_limiter.check(caller):
        raise RateLimitExceededError(f"Rate limit exceeded for {caller}")


def authenticate(operation: str, signer: str, field: str, params: dict, issued_at: int, signature: str) -> str:
    """Validates the acting address and checks it signed this request. Returns the address."""
    address = validate_address(signer, field)
    verifier.verify(operation, address, params, issued_at, signature)
    return address


def describe_error(operation: str, pool_id: Optional[str], error: Exception, duration: float) -> str:
    """Logs a failed operation and returns the message sent back to the client."""
    context = f"{operation} failed for pool '{pool_id}'" if pool_id else f"{operation} failed"
    if isinstance(error, ToleranceExceededError):
        logger.critical(f"{context}: conservation invariant broken: {error}, duration: {duration:.3f}s")
        return f"Error [{error.code}]: settlement shortfall exceeds tolerance. Operators have been alerted."
    if isinstance(error, LaunchpadError):
        logger.warning(f"{context}: [{error.code}] {error}, duration: {duration:.3f}s")
        return f"Error [{error.code}]: {error}"
    if isinstance(error, (ValidationError, RateLimitExceededError, ValueError)):
        logger.warning(f"{context}: {error}")
        return f"Error: {error}"
    if isinstance(error, TransferFailedError):
        logger.error(f"{context}: transfer failed: {error}, duration: {duration:.3f}s")
        return f"Error: token transfer failed: {error}"
    logger.exception(f"{context}: unexpected error: {error}")
    return "An unexpected server error occurred."


async def run_operation(operation: str, pool_id: Optional[str], action: Callable[[], T], render: Callable[[T], str]) -> str:
    start_time = time.time()
    try:
        result = await asyncio.to_thread(action)
        logger.debug(f"{operation} completed for pool '{pool_id}' in {time.time() - start_time:.3f}s")
        return render(result)
    except Exception as e:
        return describe_error(operation, pool_id, e, time.time() - start_time)


# --- Pool lifecycle tools ---

@mcp.tool()
async def create_pool(
    context: Context,
    creator: str = Field(..., description="Address creating the pool; becomes its first admin."),
    supply_token: str = Field(..., description="Mint address of the token being sold."),
    purchase_token: str = Field(..., description="Mint address of the token paid by buyers."),
    purchase_token_recipient: str = Field(..., description="Address entitled to withdraw the proceeds."),
    ido_start_time: int = Field(..., description="IDO start (Unix timestamp)."),
    ido_end_time: int = Field(..., description="IDO end (Unix timestamp)."),
    claim_start_time: int = Field(..., description="Claim start (Unix timestamp)."),
    hard_cap: int = Field(..., description="Maximum purchase token amount honored (base units)."),
    ido_supply: int = Field(..., description="Supply token amount sold at the hard cap (base units)."),
    minimum_purchase_amount: int = Field(0, description="Minimum purchase (base units)."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Creates a new IDO pool in the Edit period and returns its handle."""
    def action() -> str:
        check_rate_limit(creator)
        signer = authenticate(
            "create_pool", creator, "creator",
            {
                "supply_token": supply_token,
                "purchase_token": purchase_token,
                "purchase_token_recipient": purchase_token_recipient,
                "ido_start_time": ido_start_time,
                "ido_end_time": ido_end_time,
                "claim_start_time": claim_start_time,
                "hard_cap": hard_cap,
                "ido_supply": ido_supply,
                "minimum_purchase_amount": minimum_purchase_amount,
            },
            issued_at, signature,
        )
        return launchpad.create_pool(
            creator=signer,
            supply_token=validate_address(supply_token, "supply_token"),
            purchase_token=validate_address(purchase_token, "purchase_token"),
            purchase_token_recipient=validate_address(purchase_token_recipient, "purchase_token_recipient"),
            ido_start_time=ido_start_time,
            ido_end_time=ido_end_time,
            claim_start_time=claim_start_time,
            hard_cap=validate_amount(hard_cap, "hard_cap"),
            ido_supply=validate_amount(ido_supply, "ido_supply"),
            minimum_purchase_amount=validate_amount(minimum_purchase_amount, "minimum_purchase_amount"),
        )

    return await run_operation("Pool creation", None, action, lambda pool_id: f"Pool '{pool_id}' created successfully.")


@mcp.tool()
async def add_pool_admins(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An existing admin of the pool."),
    admins: List[str] = Field(..., description="Addresses to add as admins."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Adds admins to a pool."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate("add_pool_admins", caller, "caller", {"pool_id": pool_id, "admins": admins}, issued_at, signature)
        launchpad.add_pool_admins(pool_id, signer, validate_addresses(admins, "admins"))

    return await run_operation("Add admins", pool_id, action, lambda _: f"Admins of pool '{pool_id}' updated.")


@mcp.tool()
async def remove_pool_admins(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An existing admin of the pool."),
    admins: List[str] = Field(..., description="Addresses to remove from the admins."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Removes admins from a pool. Removing every admin locks the pool for good."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate("remove_pool_admins", caller, "caller", {"pool_id": pool_id, "admins": admins}, issued_at, signature)
        launchpad.remove_pool_admins(pool_id, signer, validate_addresses(admins, "admins"))

    return await run_operation("Remove admins", pool_id, action, lambda _: f"Admins of pool '{pool_id}' updated.")


@mcp.tool()
async def pause_pool(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Pauses every period-gated operation of a pool."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate("pause_pool", caller, "caller", {"pool_id": pool_id}, issued_at, signature)
        launchpad.pause_pool(pool_id, signer)

    return await run_operation("Pause", pool_id, action, lambda _: f"Pool '{pool_id}' paused.")


@mcp.tool()
async def unpause_pool(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Lifts the pause of a pool."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate("unpause_pool", caller, "caller", {"pool_id": pool_id}, issued_at, signature)
        launchpad.unpause_pool(pool_id, signer)

    return await run_operation("Unpause", pool_id, action, lambda _: f"Pool '{pool_id}' unpaused.")


@mcp.tool()
async def deposit_supply_token(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool paying the supply token."),
    amount: int = Field(..., description="Supply token amount (base units)."),
    payment: Optional[str] = Field(None, description="Signature of the transaction paying the tokens into the vault (required on Solana)."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Deposits supply token into the pool vault during the Edit period."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate(
            "deposit_supply_token", caller, "caller",
            {"pool_id": pool_id, "amount": amount, "payment": payment}, issued_at, signature,
        )
        launchpad.deposit_supply_token(pool_id, signer, validate_amount(amount, "amount"), payment)

    return await run_operation("Supply deposit", pool_id, action, lambda _: f"Deposited {amount} supply token into pool '{pool_id}'.")


@mcp.tool()
async def update_pool(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool."),
    changes_json: str = Field(..., description="JSON object of the fields to change."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Changes times, caps, supply, minimum purchase or recipient during the Edit period."""
    def action():
        check_rate_limit(caller)
        if len(changes_json) > 10000:
            raise ValidationError("Changes JSON is too large (max 10KB)")
        signer = authenticate("update_pool", caller, "caller", {"pool_id": pool_id, "changes_json": changes_json}, issued_at, signature)
        try:
            changes = json.loads(changes_json)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON format: {e}")
        if not isinstance(changes, dict):
            raise ValidationError("Changes must be a JSON object")
        if "purchase_token_recipient" in changes:
            changes["purchase_token_recipient"] = validate_address(changes["purchase_token_recipient"], "purchase_token_recipient")
        return launchpad.update_pool(pool_id, signer, **changes)

    return await run_operation("Pool update", pool_id, action, lambda pool: pool.model_dump_json(indent=2))


@mcp.tool()
async def update_whitelist(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool."),
    addresses: List[str] = Field(..., description="Addresses whose protected amount is reset."),
    protected_amount: int = Field(..., description="Protected purchase amount for every address (0 removes)."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Sets the protected purchase amount of a batch of addresses."""
    def action() -> int:
        check_rate_limit(caller)
        signer = authenticate(
            "update_whitelist", caller, "caller",
            {"pool_id": pool_id, "addresses": addresses, "protected_amount": protected_amount}, issued_at, signature,
        )
        return launchpad.update_whitelist(
            pool_id,
            signer,
            validate_addresses(addresses, "addresses"),
            validate_amount(protected_amount, "protected_amount"),
        )

    return await run_operation(
        "Whitelist update", pool_id, action,
        lambda total: f"Whitelist of pool '{pool_id}' updated. Total protected amount: {total}.",
    )


@mcp.tool()
async def set_pool_ready(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="An admin of the pool."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Ends the Edit period of a pool. Irreversible."""
    def action() -> None:
        check_rate_limit(caller)
        signer = authenticate("set_pool_ready", caller, "caller", {"pool_id": pool_id}, issued_at, signature)
        launchpad.set_pool_ready(pool_id, signer)

    return await run_operation("Set ready", pool_id, action, lambda _: f"Pool '{pool_id}' is ready.")


# --- Sale tools ---

@mcp.tool()
async def purchase(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    buyer: str = Field(..., description="Address paying the purchase token."),
    amount: int = Field(..., description="Purchase token amount (base units)."),
    payment: Optional[str] = Field(None, description="Signature of the transaction paying the tokens into the vault (required on Solana)."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """
    Buys into an IDO pool during its IDO period.

    The purchase token is moved from the buyer to the pool vault. The final
    allocation is only known after the sale: if the pool is oversubscribed the
    unfilled part of the purchase is refunded at claim time.
    """
    def action():
        check_rate_limit(buyer)
        signer = authenticate(
            "purchase", buyer, "buyer", {"pool_id": pool_id, "amount": amount, "payment": payment}, issued_at, signature,
        )
        return launchpad.purchase(pool_id, signer, validate_amount(amount, "amount"), payment)

    return await run_operation(
        "Purchase", pool_id, action,
        lambda c: f"Purchased {amount} in pool '{pool_id}'. Total purchased by {c.address}: {c.purchased}.",
    )


@mcp.tool()
async def claim(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    address: str = Field(..., description="Participant whose allocation and refund are paid out."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Pays out the supply token allocation and purchase token refund of a participant."""
    def action():
        check_rate_limit(address)
        signer = authenticate("claim", address, "address", {"pool_id": pool_id}, issued_at, signature)
        return launchpad.claim(pool_id, signer)

    return await run_operation(
        "Claim", pool_id, action,
        lambda c: f"Claimed {c.claimable} supply token and {c.refund} refund from pool '{pool_id}'.",
    )


@mcp.tool()
async def withdraw(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
    caller: str = Field(..., description="The purchase token recipient of the pool."),
    signature: str = Field(..., description="Base58 signature of the request by the acting address."),
    issued_at: int = Field(..., description="Unix timestamp at which the request was signed."),
) -> str:
    """Withdraws the sale proceeds and any unsold supply to the recipient."""
    def action():
        check_rate_limit(caller)
        signer = authenticate("withdraw", caller, "caller", {"pool_id": pool_id}, issued_at, signature)
        return launchpad.withdraw(pool_id, signer)

    return await run_operation(
        "Withdraw", pool_id, action,
        lambda r: f"Withdrew {r[0]} purchase token and {r[1]} unsold supply token from pool '{pool_id}'.",
    )


# --- Query tools ---

@mcp.tool()
async def list_pools(context: Context) -> str:
    """Lists the handles of every pool."""
    return json.dumps(launchpad.list_pools())


@mcp.tool()
async def get_pools_view(
    context: Context,
    pool_ids: List[str] = Field(..., description="Pool handles to display."),
) -> str:
    """Returns a JSON display snapshot of the given pools."""
    return await run_operation(
        "Pools view", None, lambda: launchpad.get_pools_view(pool_ids),
        lambda views: json.dumps([v.model_dump(mode="json") for v in views], indent=2),
    )


@mcp.tool()
async def get_pool_admins(
    context: Context,
    pool_id: str = Field(..., description="The pool handle."),
) -> str:
    """Returns the admins of a pool as a JSON list."""
    return await run_operation("Get admins", pool_id, lambda: launchpad.get_pool_admins(pool_id), json.dumps)


@mcp.tool()
async def get_claimable_amount(
    context: Context,
    address: str = Field(..., description="Participant address."),
    pool_id: str = Field(..., description="The pool handle."),
) -> str:
    """Returns the current claimable snapshot of an address as JSON."""
    return await run_operation(
        "Get claimable", pool_id,
        lambda: launchpad.get_claimable_amount(validate_address(address, "address"), pool_id),
        lambda c: c.model_dump_json(indent=2),
    )


@mcp.tool()
async def mint_test_tokens(
    context: Context,
    token: str = Field(..., description="Token mint address."),
    account: str = Field(..., description="Receiving account."),
    amount: int = Field(..., description="Amount in base units."),
) -> str:
    """Mints test tokens on the in-memory ledger (development only)."""
    def action() -> None:
        if not isinstance(launchpad.gateway, InMemoryLedger):
            raise ValidationError("Test tokens can only be minted on the in-memory ledger")
        launchpad.gateway.mint(validate_address(token, "token"), validate_address(account, "account"), validate_amount(amount, "amount"))

    return await run_operation("Mint", None, action, lambda _: f"Minted {amount} of {token} to {account}.")


# --- Main Execution ---
if __name__ == "__main__":
    logger.info("Starting IDO Launchpad MCP Server...")
    logger.info(f"Loaded {len(launchpad.list_pools())} pool(s).")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    finally:
        logger.info("IDO Launchpad MCP Server stopped.")
