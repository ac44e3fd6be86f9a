import time

import pytest
from solders.keypair import Keypair

from mcp_ido_launchpad.actions import create_app, get_cors_headers
from mcp_ido_launchpad.auth import sign_action


@pytest.fixture
def pool_id(launchpad, accounts, make_pool):
    pool_id = make_pool()
    launchpad.set_pool_ready(pool_id, accounts["admin"])
    return pool_id


@pytest.fixture
def client(launchpad):
    app = create_app(launchpad)
    app.config["TESTING"] = True
    return app.test_client()


def test_cors_headers_default_to_wildcard():
    assert get_cors_headers("https://example.org")["Access-Control-Allow-Origin"] == "*"


def test_list_and_get_pools(client, pool_id):
    response = client.get("/pools")
    assert response.status_code == 200
    assert [v["pool_id"] for v in response.get_json()] == [pool_id]

    response = client.get(f"/pools/{pool_id}")
    assert response.status_code == 200
    assert response.get_json()["period"] == "pending"
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_unknown_pool_is_404(client):
    response = client.get("/pools/missing")

    assert response.status_code == 404
    assert response.get_json()["code"] == "pool-not-found"


def test_preflight(client, pool_id):
    response = client.options(f"/pools/{pool_id}/purchase")

    assert response.status_code == 204
    assert "POST" in response.headers["Access-Control-Allow-Methods"]


def purchase_body(sign, name, account, pool_id, amount, payment=None):
    signature, issued_at = sign(name, "purchase", {"pool_id": pool_id, "amount": amount, "payment": payment})
    return {"account": account, "amount": amount, "payment": payment, "signature": signature, "issued_at": issued_at}


def claim_body(sign, name, account, pool_id):
    signature, issued_at = sign(name, "claim", {"pool_id": pool_id})
    return {"account": account, "signature": signature, "issued_at": issued_at}


def test_purchase_and_claim(client, clock, accounts, sign, pool_id, timeline):
    start, end, claim_start = timeline
    user1 = accounts["user1"]

    response = client.post(f"/pools/{pool_id}/purchase", json=purchase_body(sign, "user1", user1, pool_id, 1_000))
    assert response.status_code == 409
    assert response.get_json()["code"] == "not-started"

    clock.now = start
    response = client.post(f"/pools/{pool_id}/purchase", json=purchase_body(sign, "user1", user1, pool_id, 150_000))
    assert response.status_code == 200
    assert response.get_json()["claimable"] == 75_000

    response = client.get(f"/pools/{pool_id}/claimable/{user1}")
    assert response.get_json()["purchased"] == 150_000

    clock.now = claim_start
    response = client.post(f"/pools/{pool_id}/claim", json=claim_body(sign, "user1", user1, pool_id))
    assert response.status_code == 200
    assert response.get_json()["claimed"] is True

    response = client.post(f"/pools/{pool_id}/claim", json=claim_body(sign, "user1", user1, pool_id))
    assert response.status_code == 409
    assert response.get_json()["code"] == "already-claimed"


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": 10},
        {"account": "not-an-address", "amount": 10},
        {"account": None, "amount": 10},
    ],
)
def test_purchase_rejects_bad_payload(client, pool_id, payload):
    response = client.post(f"/pools/{pool_id}/purchase", json=payload)

    assert response.status_code == 400


def test_purchase_rejects_bad_amount(client, accounts, pool_id):
    for amount in (0, None, "lots"):
        response = client.post(f"/pools/{pool_id}/purchase", json={"account": accounts["user1"], "amount": amount})
        assert response.status_code == 400


def test_purchase_requires_json(client, pool_id):
    response = client.post(f"/pools/{pool_id}/purchase", data="account=x")

    assert response.status_code == 400


def test_unfunded_purchase_is_402(client, clock, pool_id, timeline):
    clock.now = timeline[0]
    broke = Keypair()
    issued_at = int(time.time())
    signature = sign_action(broke, "purchase", {"pool_id": pool_id, "amount": 1_000, "payment": None}, issued_at)
    body = {"account": str(broke.pubkey()), "amount": 1_000, "signature": signature, "issued_at": issued_at}

    response = client.post(f"/pools/{pool_id}/purchase", json=body)

    assert response.status_code == 402


def test_invalid_claimable_address(client, pool_id):
    response = client.get(f"/pools/{pool_id}/claimable/nope")

    assert response.status_code == 400


def test_purchase_signed_by_another_key_is_401(client, clock, accounts, sign, pool_id, timeline):
    clock.now = timeline[0]
    # user2 signs a purchase that debits user1.
    body = purchase_body(sign, "user2", accounts["user1"], pool_id, 1_000)

    response = client.post(f"/pools/{pool_id}/purchase", json=body)

    assert response.status_code == 401
    assert response.get_json()["code"] == "invalid-signature"
    assert client.get(f"/pools/{pool_id}/claimable/{accounts['user1']}").get_json()["purchased"] == 0


def test_claim_without_signature_is_400(client, accounts, pool_id):
    response = client.post(f"/pools/{pool_id}/claim", json={"account": accounts["user1"]})

    assert response.status_code == 400


def test_tampered_amount_is_401(client, clock, accounts, sign, pool_id, timeline):
    clock.now = timeline[0]
    body = purchase_body(sign, "user1", accounts["user1"], pool_id, 1_000)
    body["amount"] = 2_000

    response = client.post(f"/pools/{pool_id}/purchase", json=body)

    assert response.status_code == 401


def test_replayed_claim_is_401(client, clock, accounts, sign, pool_id, timeline):
    clock.now = timeline[0]
    client.post(f"/pools/{pool_id}/purchase", json=purchase_body(sign, "user1", accounts["user1"], pool_id, 1_000))
    clock.now = timeline[2]
    body = claim_body(sign, "user1", accounts["user1"], pool_id)

    assert client.post(f"/pools/{pool_id}/claim", json=body).status_code == 200
    response = client.post(f"/pools/{pool_id}/claim", json=body)

    assert response.status_code == 401
