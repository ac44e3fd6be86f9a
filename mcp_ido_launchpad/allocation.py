"""
Allocation Engine

This module computes, after the fact and without replaying purchase order, how
much of the supply token and how much refund every participant of a pool is
entitled to. It is a pure projection of pool state: nothing here mutates a
pool, and two calls on unchanged state return identical results.

Allocation Regimes:
- Under- or exactly-subscribed (total_purchased <= hard_cap): every purchased
  unit is filled and converted at the sale-wide ratio ido_supply / hard_cap.
  Unsold supply stays in the vault for the operator to withdraw.
- Oversubscribed (total_purchased > hard_cap): whitelist-protected demand is
  filled first, unit for unit up to each address's protected amount. The room
  left under the cap is shared pro rata across all unprotected demand. The
  unfilled remainder of each purchase is refunded.

Rounding:
    Every division floors, so the sum of all fills never exceeds hard_cap and
    the sum of all claimable amounts never exceeds ido_supply. Rounding dust is
    left in the vault, never over-allocated.
"""
from typing import Tuple

from mcp_ido_launchpad.schemas import Claimable, Pool


def mul_div(a: int, b: int, c: int) -> int:
    """Floor of a * b / c. Python ints do not overflow, so no widening is needed."""
    if a < 0 or b < 0:
        raise ValueError("mul_div operands must be non-negative")
    if c <= 0:
        raise ValueError("mul_div divisor must be positive")
    return a * b // c


def is_oversubscribed(pool: Pool) -> bool:
    return pool.total_purchased > pool.hard_cap


def compute_fill(pool: Pool, address: str) -> int:
    """Portion of an address's purchase honored after pro-rata reduction."""
    purchased = pool.purchased_of(address)
    if purchased == 0 or not is_oversubscribed(pool):
        return purchased

    protected = pool.protected_of(address)
    if protected >= purchased:
        return purchased

    # Oversubscribed implies total_purchased > hard_cap >= total_purchased_protected,
    # so the unprotected demand below is strictly positive.
    room = pool.hard_cap - pool.total_purchased_protected
    unprotected_demand = pool.total_purchased - pool.total_purchased_protected
    return protected + mul_div(purchased - protected, room, unprotected_demand)


def get_claimable(pool: Pool, address: str) -> Claimable:
    """
    Computes the claimable snapshot of ``address`` under the current pool state.

    Args:
        pool: The pool to project.
        address: The participant address.

    Returns:
        A Claimable with the supply token allocation and the purchase token
        refund. An address that never purchased gets an all-zero Claimable.
    """
    purchased = pool.purchased_of(address)
    if purchased == 0:
        return Claimable(address=address)

    fill = compute_fill(pool, address)
    return Claimable(
        address=address,
        protected_amount=pool.protected_of(address),
        claimed=pool.has_claimed(address),
        claimable=mul_div(fill, pool.ido_supply, pool.hard_cap),
        purchased=purchased,
        refund=purchased - fill,
    )


def sale_proceeds(pool: Pool) -> Tuple[int, int]:
    """
    Operator proceeds of a finished sale.

    Returns:
        (purchase token amount owed to the recipient, unsold supply token amount).
    """
    if is_oversubscribed(pool):
        return pool.hard_cap, 0
    sold = mul_div(pool.total_purchased, pool.ido_supply, pool.hard_cap)
    return pool.total_purchased, pool.ido_supply - sold
