"""
Signed Request Verification

Every mutating request names its actor (creator, caller, buyer or address).
The actor proves it holds the key of that address by signing a canonical
message with its Solana keypair:

    {"issued_at": ..., "operation": ..., "params": {...}, "signer": ...}

serialized as compact JSON with sorted keys. ``params`` are the request's
arguments (pool_id included) exactly as sent.

Verification Rules:
- The signature must be a valid ed25519 signature of the message by ``signer``
- ``issued_at`` must lie within ``max_age`` seconds of the server clock
- A signature is accepted once; replays inside the window are rejected
"""
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from mcp_ido_launchpad.config import AUTH_MAX_AGE
from mcp_ido_launchpad.errors import InvalidSignatureError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


def action_message(operation: str, signer: str, params: Dict[str, Any], issued_at: int) -> bytes:
    return json.dumps(
        {"operation": operation, "signer": signer, "params": params, "issued_at": issued_at},
        sort_keys=True,
        separators=(",", ":"),
    ).encode()


def sign_action(keypair: Keypair, operation: str, params: Dict[str, Any], issued_at: int) -> str:
    """Client-side helper: signs a request as ``keypair`` and returns the base58 signature."""
    message = action_message(operation, str(keypair.pubkey()), params, issued_at)
    return str(keypair.sign_message(message))


class ActionVerifier:
    def __init__(self, max_age: int = AUTH_MAX_AGE, clock: Optional[Callable[[], float]] = None):
        self.max_age = max_age
        self._clock = clock or time.time
        # {signature: issued_at}
        self._seen: "OrderedDict[str, int]" = OrderedDict()
        self._lock = threading.Lock()

    def verify(self, operation: str, signer: str, params: Dict[str, Any], issued_at: int, signature: str) -> None:
        """
        Checks that ``signer`` signed this exact request.

        Raises:
            InvalidSignatureError: If the signature is malformed, stale, replayed
                or does not verify against ``signer``.
        """
        now = int(self._clock())
        if not isinstance(issued_at, int) or abs(now - issued_at) > self.max_age:
            raise InvalidSignatureError(f"Signed request for {operation} is expired or issued in the future")

        try:
            sig = Signature.from_string(signature)
            pubkey = Pubkey.from_string(signer)
        except (TypeError, ValueError):
            raise InvalidSignatureError(f"Malformed signature or signer for {operation}")

        if not sig.verify(pubkey, action_message(operation, signer, params, issued_at)):
            logger.warning(f"Rejected {operation} request: signature does not match {signer}")
            raise InvalidSignatureError(f"Signature does not prove the key of {signer}")

        with self._lock:
            self._forget_before(now - self.max_age)
            if signature in self._seen:
                logger.warning(f"Rejected replayed {operation} request from {signer}")
                raise InvalidSignatureError("Signed request was already used")
            self._seen[signature] = issued_at

    def _forget_before(self, cutoff: int) -> None:
        expired = [s for s, issued_at in self._seen.items() if issued_at < cutoff]
        for s in expired:
            del self._seen[s]
