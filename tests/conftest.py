import os

# Keep test runs in memory: no snapshots on disk, no RPC endpoint needed.
os.environ["POOL_STATE_DIR"] = ""
os.environ["LEDGER_BACKEND"] = "memory"
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10")

import itertools
import time

import pytest
from solders.keypair import Keypair

from mcp_ido_launchpad.auth import sign_action
from mcp_ido_launchpad.launchpad import Launchpad
from mcp_ido_launchpad.ledger import InMemoryLedger

START = 1_700_000_000
END = START + 100
CLAIM = END + 50


class ManualClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def new_address() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def clock():
    return ManualClock(START - 1000)


@pytest.fixture
def launchpad(ledger, clock):
    return Launchpad(ledger, clock=clock, tolerance=100)


@pytest.fixture
def keypairs():
    return {name: Keypair() for name in ("admin", "user1", "user2", "user3")}


@pytest.fixture
def accounts(keypairs):
    names = {name: str(keypair.pubkey()) for name, keypair in keypairs.items()}
    names.update(supply=new_address(), purchase=new_address())
    return names


@pytest.fixture
def sign(keypairs):
    """Signs a request as one of the named keypairs. Returns (signature, issued_at)."""
    # Distinct timestamps so repeating an identical request is not a replay.
    skew = itertools.count()

    def _sign(name, operation, params):
        issued_at = int(time.time()) - next(skew)
        return sign_action(keypairs[name], operation, params, issued_at), issued_at

    return _sign


@pytest.fixture
def make_pool(launchpad, ledger, accounts):
    """Creates a funded pool still in the Edit period and returns its handle."""

    def _make_pool(hard_cap=1_000_000, ido_supply=500_000, minimum_purchase_amount=0, fund=True):
        pool_id = launchpad.create_pool(
            creator=accounts["admin"],
            supply_token=accounts["supply"],
            purchase_token=accounts["purchase"],
            purchase_token_recipient=accounts["admin"],
            ido_start_time=START,
            ido_end_time=END,
            claim_start_time=CLAIM,
            hard_cap=hard_cap,
            ido_supply=ido_supply,
            minimum_purchase_amount=minimum_purchase_amount,
        )
        if fund:
            ledger.mint(accounts["supply"], accounts["admin"], ido_supply)
            launchpad.deposit_supply_token(pool_id, accounts["admin"], ido_supply)
        for user in ("user1", "user2", "user3"):
            ledger.mint(accounts["purchase"], accounts[user], 10**16)
        return pool_id

    return _make_pool


@pytest.fixture
def timeline():
    """IDO start, IDO end and claim start of pools built by make_pool."""
    return START, END, CLAIM


@pytest.fixture
def address_factory():
    return new_address
