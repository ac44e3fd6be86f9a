"""
Tolerant transfers out of a pool vault.

Floor rounding across many claims can leave a vault a few base units short of
the last payout. A shortfall up to the tolerance is absorbed: the vault pays
what it holds and a TransferLoss event records the difference. A larger
shortfall means the conservation invariant is broken upstream and fails hard.
"""
from mcp_ido_launchpad.errors import ToleranceExceededError
from mcp_ido_launchpad.events import EventLog, TransferLoss
from mcp_ido_launchpad.ledger import LedgerGateway


def plan_tolerant_transfer(gateway: LedgerGateway, token: str, vault: str, amount: int, tolerance: int) -> int:
    """Returns the amount the vault can actually pay, without moving anything."""
    balance = gateway.balance_of(token, vault)
    if amount <= balance:
        return amount
    shortfall = amount - balance
    if shortfall > tolerance:
        raise ToleranceExceededError(
            f"Vault {vault} is short {shortfall} of {token} for a transfer of {amount} "
            f"(balance {balance}, tolerance {tolerance})"
        )
    return balance


def execute_planned_transfer(
    gateway: LedgerGateway,
    events: EventLog,
    token: str,
    vault: str,
    recipient: str,
    expected_amount: int,
    actual_amount: int,
) -> None:
    if actual_amount > 0:
        gateway.transfer(token, vault, recipient, actual_amount)
    if actual_amount < expected_amount:
        events.emit(TransferLoss(
            token=token,
            sender=vault,
            recipient=recipient,
            expected_amount=expected_amount,
            actual_amount=actual_amount,
        ))


def tolerant_transfer(
    gateway: LedgerGateway,
    events: EventLog,
    token: str,
    vault: str,
    recipient: str,
    amount: int,
    tolerance: int,
) -> int:
    """
    Transfers ``amount`` of ``token`` from ``vault`` to ``recipient``, absorbing
    a shortfall of at most ``tolerance`` base units.

    Returns:
        The amount actually transferred.

    Raises:
        ToleranceExceededError: If the vault is short by more than ``tolerance``.
    """
    actual = plan_tolerant_transfer(gateway, token, vault, amount, tolerance)
    execute_planned_transfer(gateway, events, token, vault, recipient, amount, actual)
    return actual
