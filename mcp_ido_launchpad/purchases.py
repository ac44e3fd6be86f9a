"""
Purchase ledger of a pool.

Keeps per-address cumulative purchases and two running aggregates:
``total_purchased`` and ``total_purchased_protected``, the latter being the
cached projection ``sum(min(purchased[a], whitelist[a]))``. The incremental
update below reproduces that sum for any order of purchases; the
``rederive_*`` helpers recompute the aggregates from scratch.
"""
from mcp_ido_launchpad.errors import BelowMinimumError, InvalidAmountError
from mcp_ido_launchpad.schemas import Pool


def validate_purchase_amount(pool: Pool, amount: int) -> None:
    if amount <= 0:
        raise InvalidAmountError("Purchase amount must be positive")
    if amount < pool.minimum_purchase_amount:
        raise BelowMinimumError(
            f"Purchase amount {amount} is below the minimum {pool.minimum_purchase_amount} of pool {pool.pool_id}"
        )


def protected_fill_delta(old_purchased: int, amount: int, protected: int) -> int:
    """Part of a new purchase that falls inside the buyer's protected amount."""
    if protected <= old_purchased:
        return 0
    return min(old_purchased + amount, protected) - old_purchased


def record_purchase(pool: Pool, buyer: str, amount: int) -> None:
    """Books a purchase whose transfer into the vault already succeeded."""
    old = pool.purchased_of(buyer)
    pool.total_purchased_protected += protected_fill_delta(old, amount, pool.protected_of(buyer))
    pool.purchased[buyer] = old + amount
    pool.total_purchased += amount


def rederive_total_purchased(pool: Pool) -> int:
    return sum(pool.purchased.values())


def rederive_total_purchased_protected(pool: Pool) -> int:
    return sum(min(amount, pool.protected_of(address)) for address, amount in pool.purchased.items())
