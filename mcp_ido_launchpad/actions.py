import os
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request
from solders.pubkey import Pubkey

from mcp_ido_launchpad import config
from mcp_ido_launchpad.auth import ActionVerifier
from mcp_ido_launchpad.errors import (
    AuthorizationError,
    InvalidSignatureError,
    LaunchpadError,
    PoolNotFoundError,
    ToleranceExceededError,
    TransferFailedError,
)
from mcp_ido_launchpad.launchpad import Launchpad
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

MAX_AMOUNT = 10**18


def get_cors_headers(origin: str) -> Dict[str, str]:
    """Get CORS headers with origin validation."""
    allowed_origin = "*"
    if "*" not in config.CORS_ALLOWED_ORIGINS:
        if origin in config.CORS_ALLOWED_ORIGINS:
            allowed_origin = origin
        else:
            allowed_origin = config.CORS_ALLOWED_ORIGINS[0] if config.CORS_ALLOWED_ORIGINS else "null"

    return {
        'Access-Control-Allow-Origin': allowed_origin,
        'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
        'Access-Control-Allow-Headers': 'Content-Type, Authorization',
        'Access-Control-Max-Age': '3600',
        'Access-Control-Allow-Credentials': 'false'
    }


def _parse_address(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Address must be a non-empty string")
    return str(Pubkey.from_string(value.strip()))


def _error_status(error: LaunchpadError) -> int:
    if isinstance(error, PoolNotFoundError):
        return 404
    if isinstance(error, InvalidSignatureError):
        return 401
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, ToleranceExceededError):
        return 500
    return 409


def create_app(launchpad: Launchpad, verifier: Optional[ActionVerifier] = None) -> Flask:
    """
    Builds the HTTP action API over a launchpad.

    Routes:
        GET  /pools                                 all pool views
        GET  /pools/<pool_id>                       one pool view
        GET  /pools/<pool_id>/claimable/<address>   claimable snapshot
        POST /pools/<pool_id>/purchase              {"account", "amount", "payment", "signature", "issued_at"}
        POST /pools/<pool_id>/claim                 {"account", "signature", "issued_at"}

    POST bodies are signed by the account the same way as the MCP tools
    ("purchase" and "claim" operations, see auth.py).

    Launchpad errors are returned as {"message": ..., "code": ...}.
    """
    app = Flask(__name__)
    verifier = verifier or ActionVerifier()

    def respond(body: Any, status: int = 200) -> Tuple[Any, int, Dict[str, str]]:
        return jsonify(body), status, get_cors_headers(request.headers.get('Origin', '*'))

    def fail(error: LaunchpadError) -> Tuple[Any, int, Dict[str, str]]:
        if isinstance(error, ToleranceExceededError):
            logger.critical(f"Settlement shortfall above tolerance: {error}")
        else:
            logger.warning(f"Launchpad request rejected: [{error.code}] {error}")
        return respond({"message": str(error), "code": error.code}, _error_status(error))

    def read_payload() -> Dict[str, Any]:
        if not request.is_json:
            raise ValueError("Content-Type must be application/json")
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValueError("Empty or invalid JSON payload")
        if "account" not in payload:
            raise ValueError("Account not provided in request")
        if not isinstance(payload.get("signature"), str) or not isinstance(payload.get("issued_at"), int):
            raise ValueError("Signed requests need a signature and an integer issued_at")
        return payload

    @app.route('/pools', methods=['GET'])
    def list_pools():
        views = launchpad.get_pools_view(launchpad.list_pools())
        return respond([v.model_dump(mode="json") for v in views])

    @app.route('/pools/<pool_id>', methods=['GET'])
    def get_pool(pool_id: str):
        try:
            view = launchpad.get_pools_view([pool_id])[0]
        except LaunchpadError as e:
            return fail(e)
        return respond(view.model_dump(mode="json"))

    @app.route('/pools/<pool_id>/claimable/<address>', methods=['GET'])
    def get_claimable(pool_id: str, address: str):
        try:
            claimable = launchpad.get_claimable_amount(_parse_address(address), pool_id)
        except ValueError as e:
            return respond({"message": f"Invalid address: {e}"}, 400)
        except LaunchpadError as e:
            return fail(e)
        return respond(claimable.model_dump(mode="json"))

    @app.route('/pools/<pool_id>/purchase', methods=['OPTIONS'])
    @app.route('/pools/<pool_id>/claim', methods=['OPTIONS'])
    def handle_options(pool_id: str):
        """Handles CORS preflight requests."""
        return '', 204, get_cors_headers(request.headers.get('Origin', '*'))

    @app.route('/pools/<pool_id>/purchase', methods=['POST'])
    def post_purchase(pool_id: str):
        try:
            payload = read_payload()
            buyer = _parse_address(payload["account"])
            amount = payload.get("amount")
            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0 or amount > MAX_AMOUNT:
                raise ValueError("Amount must be a positive integer within range")
            payment = payload.get("payment")
            if payment is not None and not isinstance(payment, str):
                raise ValueError("Payment must be a transaction signature")
        except (ValueError, TypeError) as e:
            return respond({"message": str(e)}, 400)

        try:
            verifier.verify(
                "purchase", buyer, {"pool_id": pool_id, "amount": amount, "payment": payment},
                payload["issued_at"], payload["signature"],
            )
            claimable = launchpad.purchase(pool_id, buyer, amount, payment)
        except LaunchpadError as e:
            return fail(e)
        except TransferFailedError as e:
            logger.error(f"Purchase transfer failed in pool {pool_id}: {e}")
            return respond({"message": f"Token transfer failed: {e}"}, 402)
        return respond(claimable.model_dump(mode="json"))

    @app.route('/pools/<pool_id>/claim', methods=['POST'])
    def post_claim(pool_id: str):
        try:
            payload = read_payload()
            address = _parse_address(payload["account"])
        except (ValueError, TypeError) as e:
            return respond({"message": str(e)}, 400)

        try:
            verifier.verify("claim", address, {"pool_id": pool_id}, payload["issued_at"], payload["signature"])
            claimable = launchpad.claim(pool_id, address)
        except LaunchpadError as e:
            return fail(e)
        except TransferFailedError as e:
            logger.error(f"Claim transfer failed in pool {pool_id}: {e}")
            return respond({"message": f"Token transfer failed: {e}"}, 502)
        return respond(claimable.model_dump(mode="json"))

    return app


# --- Main Execution (for running the Flask app directly) ---
if __name__ == '__main__':
    from mcp_ido_launchpad.server import build_launchpad

    port = config.ACTIONS_PORT
    logger.info(f"Starting HTTP action API server on port {port}...")
    create_app(build_launchpad()).run(debug=os.getenv("FLASK_DEBUG", "False").lower() == "true", port=port, host="0.0.0.0")
