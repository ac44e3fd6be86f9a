"""
Settlement of a finished sale: participant claims and operator withdrawal.

Both operations plan every remaining leg (balances and tolerance) before the
first transfer. Each leg that goes through is recorded on the pool and
checkpointed before the next one starts, so when a transfer fails half way
the retried call skips the legs already paid. The final ``claimed`` /
``withdrawn`` flag is written once every leg went through.
"""
from typing import Callable, Tuple

from mcp_ido_launchpad import allocation
from mcp_ido_launchpad.errors import (
    AlreadyClaimedError,
    AlreadyWithdrawnError,
    InsufficientFundsError,
    NotRecipientError,
    NothingClaimableError,
)
from mcp_ido_launchpad.events import EventLog
from mcp_ido_launchpad.ledger import LedgerGateway
from mcp_ido_launchpad.schemas import Claimable, Pool
from mcp_ido_launchpad.tolerance import execute_planned_transfer, plan_tolerant_transfer
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

Checkpoint = Callable[[], None]


def _no_checkpoint() -> None:
    pass


def _require_exact_balance(gateway: LedgerGateway, token: str, vault: str, amount: int) -> None:
    balance = gateway.balance_of(token, vault)
    if balance < amount:
        raise InsufficientFundsError(
            f"Vault {vault} holds {balance} of {token}, needs {amount}"
        )


def claim(
    gateway: LedgerGateway,
    events: EventLog,
    pool: Pool,
    address: str,
    tolerance: int,
    checkpoint: Checkpoint = _no_checkpoint,
) -> Claimable:
    """
    Pays out the supply token allocation and the purchase token refund of ``address``.

    The claimable amounts are recomputed from the pool, never taken from a
    cached value. The supply leg is exact; the refund leg tolerates rounding
    shortfall up to ``tolerance``. ``checkpoint`` is called after the supply
    leg is recorded so the caller can persist it.

    Returns:
        The settled Claimable, marked as claimed.

    Raises:
        AlreadyClaimedError: If the address already claimed.
        NothingClaimableError: If there is neither allocation nor refund.
        ToleranceExceededError: If the refund shortfall exceeds the tolerance.
    """
    claimable = allocation.get_claimable(pool, address)
    if pool.has_claimed(address):
        raise AlreadyClaimedError(f"{address} already claimed from pool {pool.pool_id}")
    if claimable.claimable == 0 and claimable.refund == 0:
        raise NothingClaimableError(f"{address} has nothing to claim from pool {pool.pool_id}")

    pay_supply = claimable.claimable > 0 and not pool.supply_claimed.get(address, False)
    pay_refund = claimable.refund > 0 and not pool.refund_claimed.get(address, False)

    refund = 0
    if pay_refund:
        refund = plan_tolerant_transfer(gateway, pool.purchase_token, pool.vault, claimable.refund, tolerance)
    if pay_supply:
        _require_exact_balance(gateway, pool.supply_token, pool.vault, claimable.claimable)
        gateway.transfer(pool.supply_token, pool.vault, address, claimable.claimable)
        pool.supply_claimed[address] = True
        checkpoint()
    if pay_refund:
        execute_planned_transfer(
            gateway, events, pool.purchase_token, pool.vault, address, claimable.refund, refund
        )
        pool.refund_claimed[address] = True

    pool.claimed[address] = True
    logger.info(
        f"Claim settled for {address} in pool {pool.pool_id}: "
        f"supply={claimable.claimable if pay_supply else 0}, refund={refund}/{claimable.refund if pay_refund else 0}"
    )
    return claimable.model_copy(update={"claimed": True})


def withdraw(
    gateway: LedgerGateway,
    events: EventLog,
    pool: Pool,
    caller: str,
    tolerance: int,
    checkpoint: Checkpoint = _no_checkpoint,
) -> Tuple[int, int]:
    """
    Pays the sale proceeds to the purchase token recipient, together with any
    unsold supply. Proceeds can be withdrawn once.

    Returns:
        (purchase token amount paid, supply token amount returned) by this call.

    Raises:
        NotRecipientError: If ``caller`` is not the purchase token recipient.
        AlreadyWithdrawnError: If the proceeds were already withdrawn.
        ToleranceExceededError: If the proceeds shortfall exceeds the tolerance.
    """
    if caller != pool.purchase_token_recipient:
        raise NotRecipientError(f"{caller} is not the purchase token recipient of pool {pool.pool_id}")
    if pool.withdrawn:
        raise AlreadyWithdrawnError(f"Proceeds of pool {pool.pool_id} were already withdrawn")

    proceeds, leftover_supply = allocation.sale_proceeds(pool)
    if pool.supply_returned:
        leftover_supply = 0

    paid = 0
    if proceeds > 0:
        paid = plan_tolerant_transfer(gateway, pool.purchase_token, pool.vault, proceeds, tolerance)
    if leftover_supply > 0:
        _require_exact_balance(gateway, pool.supply_token, pool.vault, leftover_supply)
        gateway.transfer(pool.supply_token, pool.vault, caller, leftover_supply)
        pool.supply_returned = True
        checkpoint()
    if proceeds > 0:
        execute_planned_transfer(gateway, events, pool.purchase_token, pool.vault, caller, proceeds, paid)

    pool.withdrawn = True
    logger.info(
        f"Proceeds withdrawn from pool {pool.pool_id} by {caller}: "
        f"purchase={paid}/{proceeds}, leftover_supply={leftover_supply}"
    )
    return paid, leftover_supply
