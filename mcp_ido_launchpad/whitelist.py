"""Whitelist of protected purchase amounts and their aggregate."""
from typing import Dict, Iterable

from mcp_ido_launchpad.errors import InvalidAmountError, ProtectedExceedsCapError
from mcp_ido_launchpad.schemas import Pool
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


def update_whitelist(pool: Pool, addresses: Iterable[str], new_protected_amount: int) -> int:
    """
    Resets the protected amount of every address in ``addresses`` to
    ``new_protected_amount``.

    The whole batch is staged first and committed only if the resulting
    aggregate stays within the hard cap, so a rejected batch leaves the pool
    untouched. A zero amount removes the address from the whitelist.

    Returns:
        The new aggregate protected amount.

    Raises:
        ProtectedExceedsCapError: If the batch would push the aggregate above hard_cap.
    """
    if new_protected_amount < 0:
        raise InvalidAmountError("Protected amount cannot be negative")

    staged: Dict[str, int] = {}
    protected_amount = pool.protected_amount
    for address in addresses:
        old = staged.get(address, pool.protected_of(address))
        if old != new_protected_amount:
            protected_amount += new_protected_amount - old
            staged[address] = new_protected_amount

    if protected_amount > pool.hard_cap:
        raise ProtectedExceedsCapError(
            f"Protected amount {protected_amount} would exceed hard cap {pool.hard_cap} in pool {pool.pool_id}"
        )

    for address, amount in staged.items():
        if amount == 0:
            pool.whitelist.pop(address, None)
        else:
            pool.whitelist[address] = amount
    pool.protected_amount = protected_amount
    logger.debug(f"Whitelist of {pool.pool_id} updated: {len(staged)} changed, protected={protected_amount}")
    return protected_amount


def rederive_protected_amount(pool: Pool) -> int:
    return sum(pool.whitelist.values())
