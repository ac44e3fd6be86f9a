import pytest

from mcp_ido_launchpad import whitelist
from mcp_ido_launchpad.errors import InvalidAmountError, ProtectedExceedsCapError
from mcp_ido_launchpad.schemas import Pool


@pytest.fixture
def pool():
    return Pool(
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
        hard_cap=1_000,
        ido_supply=1_000,
        minimum_purchase_amount=0,
    )


def test_reset_to_value_semantics(pool):
    whitelist.update_whitelist(pool, ["a", "b"], 300)
    assert pool.protected_amount == 600

    whitelist.update_whitelist(pool, ["a"], 100)
    assert pool.protected_of("a") == 100
    assert pool.protected_of("b") == 300
    assert pool.protected_amount == 400


def test_zero_removes_entry(pool):
    whitelist.update_whitelist(pool, ["a"], 300)
    whitelist.update_whitelist(pool, ["a"], 0)

    assert "a" not in pool.whitelist
    assert pool.protected_of("a") == 0
    assert pool.protected_amount == 0


def test_batch_exceeding_cap_is_rejected_whole(pool):
    whitelist.update_whitelist(pool, ["a"], 400)

    with pytest.raises(ProtectedExceedsCapError):
        whitelist.update_whitelist(pool, ["b", "c"], 400)

    assert pool.whitelist == {"a": 400}
    assert pool.protected_amount == 400


def test_lowering_entries_can_make_room_within_a_batch(pool):
    whitelist.update_whitelist(pool, ["a", "b"], 500)

    whitelist.update_whitelist(pool, ["a", "b", "c"], 300)

    assert pool.protected_amount == 900


def test_duplicate_addresses_count_once(pool):
    whitelist.update_whitelist(pool, ["a", "a", "a"], 1_000)

    assert pool.protected_amount == 1_000
    assert pool.protected_amount == whitelist.rederive_protected_amount(pool)


def test_negative_amount_rejected(pool):
    with pytest.raises(InvalidAmountError):
        whitelist.update_whitelist(pool, ["a"], -1)
