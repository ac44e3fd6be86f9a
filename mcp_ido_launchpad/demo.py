"""
End-to-end walkthrough of an oversubscribed sale on the in-memory ledger.

Two whitelisted participants and one large unprotected buyer purchase against
a 1,000,000 USDC hard cap (6 decimals) for 5,000,000 IDO tokens. A manual
clock moves the pool through its periods without waiting.

Run with: python -m mcp_ido_launchpad.demo
"""
from solders.keypair import Keypair

from mcp_ido_launchpad.launchpad import Launchpad
from mcp_ido_launchpad.ledger import InMemoryLedger
from mcp.server.fastmcp.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)


class ManualClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def new_address() -> str:
    return str(Keypair().pubkey())


def run_demo() -> Launchpad:
    ledger = InMemoryLedger()
    clock = ManualClock(1_700_000_000)
    launchpad = Launchpad(ledger, clock=clock)

    supply_token, purchase_token = new_address(), new_address()
    admin, user1, user2, user3 = (new_address() for _ in range(4))

    ledger.mint(supply_token, admin, 100_000_000_000_000)
    for user in (user1, user2, user3):
        ledger.mint(purchase_token, user, 100_000_000_000_000)

    ido_start_time = clock.now + 30
    ido_end_time = ido_start_time + 30
    hard_cap = 1_000_000_000_000
    ido_supply = 5_000_000_000_000
    pool_id = launchpad.create_pool(
        creator=admin,
        supply_token=supply_token,
        purchase_token=purchase_token,
        purchase_token_recipient=admin,
        ido_start_time=ido_start_time,
        ido_end_time=ido_end_time,
        claim_start_time=ido_end_time,
        hard_cap=hard_cap,
        ido_supply=ido_supply,
        minimum_purchase_amount=10_000_000,
    )
    launchpad.deposit_supply_token(pool_id, admin, ido_supply)
    launchpad.update_whitelist(pool_id, admin, [user1, user2], 100_000_000)
    launchpad.set_pool_ready(pool_id, admin)
    logger.info(launchpad.get_pools_view([pool_id])[0].model_dump_json(indent=2))

    clock.now = ido_start_time
    for user, amount in ((user1, 50_000_000), (user2, 200_000_000), (user3, 6_000_000_000_000)):
        launchpad.purchase(pool_id, user, amount)
    logger.info(launchpad.get_pools_view([pool_id])[0].model_dump_json(indent=2))

    clock.now = ido_end_time
    for user in (user1, user2, user3):
        logger.info(launchpad.get_claimable_amount(user, pool_id).model_dump_json())
    for user in (user1, user2, user3):
        launchpad.claim(pool_id, user)

    paid, leftover = launchpad.withdraw(pool_id, admin)
    logger.info(f"Recipient withdrew {paid} purchase token and {leftover} supply token")
    logger.info(f"Transfer losses: {[e.model_dump() for e in launchpad.events if e.kind == 'TransferLoss']}")
    logger.info(launchpad.get_pools_view([pool_id])[0].model_dump_json(indent=2))
    return launchpad


if __name__ == "__main__":
    configure_logging("INFO")
    run_demo()
