import random

import pytest

from mcp_ido_launchpad import allocation, purchases, whitelist
from mcp_ido_launchpad.schemas import Pool


def build_pool(hard_cap, ido_supply, protected=None, buys=()):
    """Pool with the whitelist set first and the purchases booked in order."""
    pool = Pool(
        pool_id="pool",
        vault="vault",
        creator="admin",
        supply_token="IDO",
        purchase_token="USDC",
        purchase_token_recipient="admin",
        admins=["admin"],
        ido_start_time=1,
        ido_end_time=2,
        claim_start_time=3,
        hard_cap=hard_cap,
        ido_supply=ido_supply,
        minimum_purchase_amount=0,
    )
    for address, amount in (protected or {}).items():
        whitelist.update_whitelist(pool, [address], amount)
    for address, amount in buys:
        purchases.record_purchase(pool, address, amount)
    return pool


@pytest.fixture
def oversubscribed_pool():
    return build_pool(
        hard_cap=1_000_000_000_000,
        ido_supply=5_000_000_000_000,
        protected={"user1": 100_000_000, "user2": 100_000_000},
        buys=[("user1", 50_000_000), ("user2", 200_000_000), ("user3", 6_000_000_000_000)],
    )


def test_mul_div_floors():
    assert allocation.mul_div(7, 3, 2) == 10
    assert allocation.mul_div(10**14, 10**14, 10**14) == 10**14


def test_mul_div_rejects_bad_operands():
    with pytest.raises(ValueError):
        allocation.mul_div(1, 1, 0)
    with pytest.raises(ValueError):
        allocation.mul_div(-1, 1, 1)


def test_undersubscribed_claimable():
    pool = build_pool(hard_cap=1_000_000, ido_supply=500_000, buys=[("user1", 150_000)])

    claimable = allocation.get_claimable(pool, "user1")

    assert claimable.claimable == 75_000
    assert claimable.refund == 0
    assert claimable.purchased == 150_000
    assert claimable.claimed is False


def test_exactly_subscribed_fills_everything():
    pool = build_pool(hard_cap=1_000, ido_supply=3_000, buys=[("user1", 600), ("user2", 400)])

    assert not allocation.is_oversubscribed(pool)
    assert allocation.get_claimable(pool, "user1").claimable == 1_800
    assert allocation.get_claimable(pool, "user2").claimable == 1_200
    assert allocation.sale_proceeds(pool) == (1_000, 0)


def test_never_purchased_is_all_zero(oversubscribed_pool):
    claimable = allocation.get_claimable(oversubscribed_pool, "stranger")

    assert claimable.model_dump() == {
        "address": "stranger",
        "protected_amount": 0,
        "claimed": False,
        "claimable": 0,
        "purchased": 0,
        "refund": 0,
    }


def test_oversubscribed_protected_fill(oversubscribed_pool):
    pool = oversubscribed_pool
    assert pool.total_purchased_protected == 150_000_000

    fills = {a: allocation.compute_fill(pool, a) for a in ("user1", "user2", "user3")}
    assert fills == {"user1": 50_000_000, "user2": 116_663_888, "user3": 999_833_336_111}
    # Floor rounding leaves one unit of the cap unfilled.
    assert sum(fills.values()) == pool.hard_cap - 1

    claims = {a: allocation.get_claimable(pool, a) for a in fills}
    assert claims["user1"].claimable == 250_000_000
    assert claims["user1"].refund == 0
    assert claims["user2"].claimable == 583_319_440
    assert claims["user2"].refund == 83_336_112
    assert claims["user3"].claimable == 4_999_166_680_555
    assert claims["user3"].refund == 5_000_166_663_889

    # Allocation per purchased unit: the unprotected buyer gets strictly less.
    for protected_user in ("user1", "user2"):
        assert (
            claims["user3"].claimable * claims[protected_user].purchased
            < claims[protected_user].claimable * claims["user3"].purchased
        )


def test_fill_plus_refund_equals_purchased(oversubscribed_pool):
    for address in ("user1", "user2", "user3"):
        claimable = allocation.get_claimable(oversubscribed_pool, address)
        assert allocation.compute_fill(oversubscribed_pool, address) + claimable.refund == claimable.purchased


def test_view_is_idempotent(oversubscribed_pool):
    first = allocation.get_claimable(oversubscribed_pool, "user2")
    second = allocation.get_claimable(oversubscribed_pool, "user2")

    assert first == second


def test_oversubscribed_proceeds_take_the_cap(oversubscribed_pool):
    assert allocation.sale_proceeds(oversubscribed_pool) == (1_000_000_000_000, 0)


def test_undersubscribed_proceeds_return_unsold_supply():
    pool = build_pool(hard_cap=1_000_000, ido_supply=333_333, buys=[("user1", 150_001)])

    sold = 150_001 * 333_333 // 1_000_000
    assert allocation.sale_proceeds(pool) == (150_001, 333_333 - sold)


@pytest.mark.parametrize("seed", range(5))
def test_allocation_never_exceeds_cap_or_supply(seed):
    rng = random.Random(seed)
    hard_cap = rng.randint(10**6, 10**12)
    ido_supply = rng.randint(10**6, 10**14)
    users = [f"user{i}" for i in range(rng.randint(2, 30))]

    protected = {}
    budget = hard_cap
    for user in rng.sample(users, len(users) // 2):
        amount = rng.randint(0, budget // len(users))
        if amount:
            protected[user] = amount
            budget -= amount

    buys = [(rng.choice(users), rng.randint(1, hard_cap // 3)) for _ in range(rng.randint(1, 60))]
    pool = build_pool(hard_cap, ido_supply, protected, buys)

    fills = [allocation.compute_fill(pool, u) for u in users]
    claims = [allocation.get_claimable(pool, u) for u in users]

    assert sum(fills) <= hard_cap
    assert sum(c.claimable for c in claims) <= ido_supply
    for fill, claim in zip(fills, claims):
        assert fill + claim.refund == claim.purchased
    if allocation.is_oversubscribed(pool):
        # Each floored pro-rata share loses less than one unit.
        assert hard_cap - sum(fills) < len(users)


def test_raising_protection_never_lowers_claimable():
    buys = [("user1", 400_000), ("user2", 900_000), ("user3", 1_700_000)]
    previous = -1
    for protected_amount in (0, 50_000, 200_000, 400_000, 600_000):
        pool = build_pool(
            hard_cap=1_000_000,
            ido_supply=7_777_777,
            protected={"user1": protected_amount, "user2": 100_000},
            buys=buys,
        )
        claimable = allocation.get_claimable(pool, "user1").claimable
        assert claimable >= previous
        previous = claimable
