import base64
import json

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from mcp_ido_launchpad.errors import InvalidTransactionError, TokenBalanceError, TransferFailedError
from mcp_ido_launchpad.solana_gateway import SolanaLedgerGateway

MINT = str(Keypair().pubkey())


def rpc_transport(responses, calls):
    """Answers JSON-RPC calls from a method -> payload map, recording each call."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        calls.append(payload)
        answer = responses[payload["method"]]
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **answer})

    return httpx.MockTransport(handler)


def make_gateway(responses, calls=None, **kwargs):
    calls = calls if calls is not None else []
    client = httpx.Client(transport=rpc_transport(responses, calls))
    return SolanaLedgerGateway(client=client, rpc_endpoint="http://rpc", check_interval=0, **kwargs)


def confirmed_transfer_responses():
    return {
        "getLatestBlockhash": {"result": {"value": {"blockhash": str(Hash.default()), "lastValidBlockHeight": 1}}},
        "sendTransaction": {"result": str(Signature.default())},
        "getSignatureStatuses": {"result": {"value": [{"confirmationStatus": "confirmed", "err": None}]}},
    }


def test_balance_reads_amount():
    gateway = make_gateway({"getTokenAccountBalance": {"result": {"value": {"amount": "1234", "decimals": 6}}}})

    assert gateway.balance_of(MINT, str(Keypair().pubkey())) == 1234


def test_missing_token_account_reads_as_zero():
    gateway = make_gateway({
        "getTokenAccountBalance": {"error": {"code": -32602, "message": "Invalid param: could not find account"}}
    })

    assert gateway.balance_of(MINT, str(Keypair().pubkey())) == 0


@pytest.mark.parametrize(
    "answer",
    [
        {"error": {"code": -32000, "message": "node is behind"}},
        {"result": {"value": None}},
        httpx.Response(500, text="boom"),
    ],
)
def test_balance_errors(answer):
    gateway = make_gateway({"getTokenAccountBalance": answer})

    with pytest.raises(TokenBalanceError):
        gateway.balance_of(MINT, str(Keypair().pubkey()))


def test_vaults_are_derived_from_wallet_and_seed():
    fee_payer = Keypair()
    gateway = make_gateway({}, fee_payer=fee_payer)

    first, second = gateway.open_vault("seed-a"), gateway.open_vault("seed-b")

    assert first != second
    assert gateway.open_vault("seed-a") == first
    assert make_gateway({}, fee_payer=fee_payer).open_vault("seed-a") == first
    assert make_gateway({}, fee_payer=Keypair()).open_vault("seed-a") != first


def test_restarted_gateway_can_sign_for_a_reopened_vault():
    calls = []
    fee_payer = Keypair()
    vault = make_gateway({}, fee_payer=fee_payer).open_vault("pool-seed")
    restarted = make_gateway(confirmed_transfer_responses(), calls, fee_payer=fee_payer)
    restarted.open_vault("pool-seed")

    restarted.transfer(MINT, vault, str(Keypair().pubkey()), 500)

    assert calls[1]["method"] == "sendTransaction"


def test_transfer_requires_a_held_signer():
    calls = []
    gateway = make_gateway(confirmed_transfer_responses(), calls)

    with pytest.raises(TransferFailedError):
        gateway.transfer(MINT, str(Keypair().pubkey()), str(Keypair().pubkey()), 10)
    assert calls == []


def test_transfer_rejects_non_positive_amount():
    gateway = make_gateway(confirmed_transfer_responses())
    vault = gateway.open_vault("pool-seed")

    with pytest.raises(TransferFailedError):
        gateway.transfer(MINT, vault, str(Keypair().pubkey()), 0)


def test_transfer_signs_with_fee_payer_and_vault():
    calls = []
    fee_payer = Keypair()
    gateway = make_gateway(confirmed_transfer_responses(), calls, fee_payer=fee_payer, token_decimals={MINT: 9})
    vault = gateway.open_vault("pool-seed")

    gateway.transfer(MINT, vault, str(Keypair().pubkey()), 500)

    assert [c["method"] for c in calls] == ["getLatestBlockhash", "sendTransaction", "getSignatureStatuses"]
    encoded, options = calls[1]["params"]
    assert options["encoding"] == "base64"
    txn = Transaction.from_bytes(base64.b64decode(encoded))
    signers = [str(key) for key in txn.message.account_keys[: txn.message.header.num_required_signatures]]
    assert signers == [str(fee_payer.pubkey()), vault]


def test_rejected_transaction_raises():
    responses = confirmed_transfer_responses()
    responses["sendTransaction"] = {"error": {"code": -32002, "message": "insufficient funds"}}
    gateway = make_gateway(responses)
    vault = gateway.open_vault("pool-seed")

    with pytest.raises(TransferFailedError):
        gateway.transfer(MINT, vault, str(Keypair().pubkey()), 500)


def test_failed_on_chain_transaction_raises():
    responses = confirmed_transfer_responses()
    responses["getSignatureStatuses"] = {
        "result": {"value": [{"confirmationStatus": "finalized", "err": {"InstructionError": [0, "Custom"]}}]}
    }
    gateway = make_gateway(responses)
    vault = gateway.open_vault("pool-seed")

    with pytest.raises(TransferFailedError):
        gateway.transfer(MINT, vault, str(Keypair().pubkey()), 500)


def test_unconfirmed_transaction_times_out():
    responses = confirmed_transfer_responses()
    responses["getSignatureStatuses"] = {"result": {"value": [None]}}
    gateway = make_gateway(responses, confirmation_timeout=0)
    vault = gateway.open_vault("pool-seed")

    with pytest.raises(TransferFailedError):
        gateway.transfer(MINT, vault, str(Keypair().pubkey()), 500)


# --- Inbound payments ---

PAYMENT = str(Keypair().sign_message(b"payment"))


def vault_token_account(vault):
    return str(get_associated_token_address(Pubkey.from_string(vault), Pubkey.from_string(MINT)))


def payment_responses(authority, destination, amount, kind="transferChecked", err=None):
    if kind == "transferChecked":
        info = {"authority": authority, "destination": destination, "mint": MINT, "tokenAmount": {"amount": str(amount), "decimals": 6}}
    else:
        info = {"authority": authority, "destination": destination, "amount": str(amount)}
    instruction = {"program": "spl-token", "programId": str(TOKEN_PROGRAM_ID), "parsed": {"type": kind, "info": info}}
    return {
        "getTransaction": {
            "result": {"meta": {"err": err}, "transaction": {"message": {"instructions": [instruction]}}}
        }
    }


@pytest.mark.parametrize("kind", ["transfer", "transferChecked"])
def test_collect_accepts_matching_payment(kind):
    payer = str(Keypair().pubkey())
    vault = make_gateway({}).open_vault("pool-seed")
    calls = []
    gateway = make_gateway(payment_responses(payer, vault_token_account(vault), 500, kind), calls)

    gateway.collect(MINT, payer, vault, 500, PAYMENT)

    assert calls[0]["method"] == "getTransaction"
    assert calls[0]["params"][0] == PAYMENT


def test_collect_rejects_mismatched_payments():
    payer = str(Keypair().pubkey())
    vault = make_gateway({}).open_vault("pool-seed")
    destination = vault_token_account(vault)

    cases = [
        payment_responses(payer, destination, 499),
        payment_responses(str(Keypair().pubkey()), destination, 500),
        payment_responses(payer, vault_token_account(str(Keypair().pubkey())), 500),
        payment_responses(payer, destination, 500, err={"InstructionError": [0, "Custom"]}),
        {"getTransaction": {"result": None}},
        {"getTransaction": {"error": {"code": -32602, "message": "Invalid signature"}}},
        {"getTransaction": httpx.Response(503, text="unavailable")},
    ]
    for responses in cases:
        with pytest.raises(InvalidTransactionError):
            make_gateway(responses).collect(MINT, payer, vault, 500, PAYMENT)


@pytest.mark.parametrize("payment", [None, "", "not-a-signature"])
def test_collect_requires_a_payment_signature(payment):
    calls = []
    gateway = make_gateway({}, calls)

    with pytest.raises(InvalidTransactionError):
        gateway.collect(MINT, str(Keypair().pubkey()), gateway.open_vault("pool-seed"), 500, payment)
    assert calls == []
