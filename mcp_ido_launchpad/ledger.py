"""
Ledger gateway interface and the in-process ledger.

The launchpad never stores balances itself: it asks a ledger gateway for a
balance and asks it to move value. ``InMemoryLedger`` is the development and
test backend; ``SolanaLedgerGateway`` (see solana_gateway.py) talks to a
Solana cluster.

Value enters a vault through ``collect`` (the payer's own transfer, proven by
a payment reference where the ledger needs one) and leaves it through
``transfer``, which the gateway signs with the vault key. Vault keys are
derived from a per-pool seed so that they can be re-derived after a restart.
"""
import hashlib
from collections import defaultdict
from typing import Dict, Optional, Protocol, Tuple

from solders.keypair import Keypair

from mcp_ido_launchpad.errors import InsufficientFundsError, TransferFailedError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class LedgerGateway(Protocol):
    def open_vault(self, seed: str) -> str:
        """Return the vault account derived from ``seed``; the same seed gives the same vault."""

    def balance_of(self, token: str, account: str) -> int:
        ...

    def collect(self, token: str, payer: str, vault: str, amount: int, payment: Optional[str] = None) -> None:
        """Credit ``amount`` paid by ``payer`` into ``vault``; raises TransferFailedError on failure."""

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` of ``token`` out of a vault; raises TransferFailedError on failure."""


class InMemoryLedger:
    """Balances keyed by (token, account), with atomic single transfers."""

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)

    def open_vault(self, seed: str) -> str:
        vault = str(Keypair.from_seed(hashlib.sha256(seed.encode()).digest()).pubkey())
        logger.debug(f"Opened in-memory vault {vault}")
        return vault

    def mint(self, token: str, account: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError("Mint amount must be positive")
        self._balances[(token, account)] += amount
        logger.debug(f"Minted {amount} of {token} to {account}")

    def balance_of(self, token: str, account: str) -> int:
        return self._balances.get((token, account), 0)

    def collect(self, token: str, payer: str, vault: str, amount: int, payment: Optional[str] = None) -> None:
        # The payer is authenticated upstream, so the ledger debits it directly.
        self.transfer(token, payer, vault, amount)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailedError(f"Negative transfer amount: {amount}")
        balance = self.balance_of(token, sender)
        if balance < amount:
            raise InsufficientFundsError(
                f"Insufficient {token} balance in {sender}. Required: {amount}. Available: {balance}"
            )
        self._balances[(token, sender)] = balance - amount
        self._balances[(token, recipient)] += amount
        logger.debug(f"Transferred {amount} of {token} from {sender} to {recipient}")
