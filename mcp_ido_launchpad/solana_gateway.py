"""
Solana ledger gateway.

Implements the launchpad's ledger interface over Solana JSON-RPC. Accounts are
owner public keys; balances live in their associated token accounts.

Inbound value (purchases, supply deposits) is sent by the payer itself: the
client submits an SPL transfer to the vault's token account and hands over the
transaction signature, which ``collect`` verifies on chain, the same way ICO
payments are validated. Outbound value (claims, withdrawals) is signed by the
vault keypair, derived from the launchpad wallet and the pool's vault seed so
that it survives a restart. Every transaction fee is paid by the launchpad
wallet. Recipients must already have an associated token account for the token
they receive.
"""
import base64
import hashlib
import time
from typing import Dict, Optional

import httpx
from solders.hash import Hash as Blockhash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferCheckedParams, get_associated_token_address, transfer_checked

from mcp_ido_launchpad.config import CONFIRMATION_TIMEOUT, DEFAULT_TOKEN_DECIMALS, LAUNCHPAD_WALLET, RPC_ENDPOINT
from mcp_ido_launchpad.errors import InvalidTransactionError, TokenBalanceError, TransferFailedError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

MISSING_ACCOUNT_MARKER = "could not find account"


class SolanaLedgerGateway:
    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        rpc_endpoint: str = RPC_ENDPOINT,
        fee_payer: Keypair = LAUNCHPAD_WALLET,
        token_decimals: Optional[Dict[str, int]] = None,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT,
        check_interval: float = 2.0,
    ):
        self.client = client or httpx.Client(timeout=httpx.Timeout(10.0, connect=5.0))
        self.rpc_endpoint = rpc_endpoint
        self.fee_payer = fee_payer
        self.token_decimals = dict(token_decimals or {})
        self.confirmation_timeout = confirmation_timeout
        self.check_interval = check_interval
        self._signers: Dict[str, Keypair] = {}

    # --- Helpers ---

    def _rpc(self, method: str, params: list) -> dict:
        response = self.client.post(
            self.rpc_endpoint,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        response.raise_for_status()
        return response.json()

    def _token_account(self, token: str, owner: str) -> Pubkey:
        return get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(token))

    def vault_keypair(self, seed: str) -> Keypair:
        """Vault key derived from the launchpad wallet secret and the pool's vault seed."""
        return Keypair.from_seed(hashlib.sha256(self.fee_payer.secret() + seed.encode()).digest())

    # --- Ledger interface ---

    def open_vault(self, seed: str) -> str:
        keypair = self.vault_keypair(seed)
        vault = str(keypair.pubkey())
        self._signers[vault] = keypair
        logger.info(f"Opened Solana vault {vault}")
        return vault

    def balance_of(self, token: str, account: str) -> int:
        """Token balance of ``account``; an account never funded reads as zero."""
        token_account = self._token_account(token, account)
        try:
            result = self._rpc("getTokenAccountBalance", [str(token_account), {"commitment": "confirmed"}])
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching token balance for {token_account}: {e.response.status_code} - {e.response.text}")
            raise TokenBalanceError(f"HTTP error fetching token balance: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Error fetching token balance for {token_account}: {e}")
            raise TokenBalanceError(f"Error fetching token balance: {e}")

        if result.get("error"):
            if MISSING_ACCOUNT_MARKER in str(result["error"].get("message", "")).lower():
                return 0
            raise TokenBalanceError(f"Error fetching token balance for {token_account}: {result['error']}")

        try:
            return int(result["result"]["value"]["amount"])
        except (KeyError, TypeError, ValueError):
            raise TokenBalanceError(f"Unexpected response format for token balance of {token_account}")

    def collect(self, token: str, payer: str, vault: str, amount: int, payment: Optional[str] = None) -> None:
        """
        Verifies a payment the payer already sent into the vault.

        ``payment`` is the signature of a confirmed transaction whose SPL
        ``transfer``/``transferChecked`` instructions, signed by ``payer`` as
        authority, move exactly ``amount`` of ``token`` into the vault's
        associated token account.

        Raises:
            InvalidTransactionError: If the transaction is missing, failed, or
                does not pay ``amount`` from ``payer`` to the vault.
        """
        if not payment:
            raise InvalidTransactionError("A payment transaction signature is required on the Solana ledger")
        try:
            tx_signature = Signature.from_string(payment)
        except ValueError:
            raise InvalidTransactionError(f"Malformed payment transaction signature: {payment}")

        destination = str(self._token_account(token, vault))
        try:
            transaction_data = self._rpc(
                "getTransaction",
                [
                    str(tx_signature),
                    {"encoding": "jsonParsed", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
                ],
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error validating payment {tx_signature}: {e.response.status_code} - {e.response.text}")
            raise InvalidTransactionError(f"HTTP error validating payment: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Error validating payment {tx_signature}: {e}")
            raise InvalidTransactionError(f"Error validating payment: {e}")

        if transaction_data.get("error"):
            raise InvalidTransactionError(f"Error fetching transaction: {transaction_data['error']}")
        result = transaction_data.get("result")
        if not result:
            raise InvalidTransactionError(f"Transaction not found or not confirmed: {tx_signature}")
        meta = result.get("meta") or {}
        if meta.get("err"):
            raise InvalidTransactionError(f"Transaction {tx_signature} failed on-chain: {meta['err']}")

        paid = 0
        try:
            for ix in result["transaction"]["message"]["instructions"]:
                if ix.get("programId") != str(TOKEN_PROGRAM_ID):
                    continue
                parsed = ix.get("parsed") or {}
                if parsed.get("type") not in ("transfer", "transferChecked"):
                    continue
                info = parsed["info"]
                if info.get("destination") != destination or info.get("authority") != payer:
                    continue
                paid += int(info["tokenAmount"]["amount"] if "tokenAmount" in info else info["amount"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed transaction data for {tx_signature}: {e}")
            raise InvalidTransactionError(f"Malformed transaction data received: {e}")

        if paid != amount:
            raise InvalidTransactionError(
                f"Payment {tx_signature} moves {paid} of {token} from {payer} into vault {vault}, expected {amount}"
            )
        logger.info(f"Validated payment {tx_signature} of {amount} {token} from {payer} into vault {vault}.")

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """
        Sends a transfer_checked of ``amount`` base units and waits for confirmation.

        Raises:
            TransferFailedError: If the sender is not held by this gateway, the
                RPC call fails, or the transaction fails or is not confirmed in time.
        """
        signer = self._signers.get(sender)
        if signer is None:
            raise TransferFailedError(f"No signer available for account {sender}")
        if amount <= 0:
            raise TransferFailedError(f"Transfer amount must be positive, got {amount}")

        mint = Pubkey.from_string(token)
        transfer_ix = transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=self._token_account(token, sender),
                mint=mint,
                dest=self._token_account(token, recipient),
                owner=signer.pubkey(),
                amount=amount,
                decimals=self.token_decimals.get(token, DEFAULT_TOKEN_DECIMALS),
                signers=[],
            )
        )

        try:
            blockhash_data = self._rpc("getLatestBlockhash", [{"commitment": "finalized"}])["result"]["value"]
            blockhash = Blockhash.from_string(blockhash_data["blockhash"])

            message = Message.new_with_blockhash([transfer_ix], self.fee_payer.pubkey(), blockhash)
            keypairs = [self.fee_payer] if signer.pubkey() == self.fee_payer.pubkey() else [self.fee_payer, signer]
            txn = Transaction(keypairs, message, blockhash)

            sent = self._rpc(
                "sendTransaction",
                [
                    base64.b64encode(bytes(txn)).decode(),
                    {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"},
                ],
            )
            if sent.get("error"):
                raise TransferFailedError(f"Transaction rejected: {sent['error']}")
            tx_signature = Signature.from_string(sent["result"])
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error sending transfer of {amount} {token} from {sender}: {e.response.status_code} - {e.response.text}")
            raise TransferFailedError(f"HTTP error sending token transfer: {e.response.status_code}")
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Error sending transfer of {amount} {token} from {sender}: {e}")
            raise TransferFailedError(f"Error sending token transfer: {e}")

        logger.info(f"Sent transfer {tx_signature} of {amount} {token} from {sender} to {recipient}.")
        self._wait_for_confirmation(tx_signature)

    def _wait_for_confirmation(self, tx_signature: Signature) -> None:
        deadline = time.monotonic() + self.confirmation_timeout
        while True:
            try:
                status = self._rpc(
                    "getSignatureStatuses",
                    [[str(tx_signature)], {"searchTransactionHistory": True}],
                )["result"]["value"][0]
            except (httpx.HTTPError, KeyError, IndexError, TypeError) as e:
                logger.error(f"Error checking status for transaction {tx_signature}: {e}")
                status = None

            if status and status.get("confirmationStatus") in ("confirmed", "finalized"):
                if status.get("err") is not None:
                    logger.error(f"Transfer {tx_signature} failed on-chain: {status['err']}")
                    raise TransferFailedError(f"Token transfer failed: {status['err']}")
                logger.info(f"Transfer {tx_signature} confirmed.")
                return

            if time.monotonic() >= deadline:
                logger.warning(f"Transfer {tx_signature} confirmation timed out.")
                raise TransferFailedError("Token transfer confirmation timed out.")
            time.sleep(self.check_interval)
