import os
import logging
from typing import Optional
from solders.keypair import Keypair
from dotenv import load_dotenv

from mcp_ido_launchpad.errors import ConfigurationError

"""
Configuration Management for the IDO Launchpad

This module loads and validates every setting of the launchpad from environment
variables (optionally read from a .env file), falling back to development
defaults.

Environment Variables:
    RPC_ENDPOINT: Solana RPC endpoint URL (solana backend only)
    LEDGER_BACKEND: "memory" (in-process ledger) or "solana"
    LAUNCHPAD_WALLET_SEED: Comma-separated seed bytes of the fee payer wallet
    TOKEN_DECIMALS: Default decimals used for transfer_checked (0-18)
    TRANSFER_TOLERANCE: Rounding shortfall absorbed by settlement transfers
    CONFIRMATION_TIMEOUT: Seconds to wait for an on-chain transfer to confirm
    RATE_LIMIT_PER_MINUTE: Mutating requests allowed per caller per minute
    AUTH_MAX_AGE: Seconds a signed request stays valid
    POOL_STATE_DIR: Directory receiving pool snapshots ("" disables them)
    CORS_ALLOWED_ORIGINS: Comma-separated allowed CORS origins
    ACTIONS_PORT: Port for the HTTP action API
"""

logger = logging.getLogger(__name__)

load_dotenv()

LEDGER_BACKENDS = ("memory", "solana")


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_choice(key: str, default: str, choices: tuple) -> str:
    value = os.getenv(key, default).strip().lower()
    if value not in choices:
        raise ConfigurationError(f"Environment variable {key} must be one of {', '.join(choices)}")
    return value


def _load_launchpad_wallet() -> Keypair:
    """Load the fee payer wallet from environment with validation."""
    seed_str = os.getenv("LAUNCHPAD_WALLET_SEED", ",".join(["1"] * 32))

    try:
        seed_parts = [x.strip() for x in seed_str.split(",")]
        if len(seed_parts) != 32:
            raise ValueError(f"LAUNCHPAD_WALLET_SEED must contain exactly 32 comma-separated integers, got {len(seed_parts)}")

        wallet = Keypair.from_seed(bytes([int(x) for x in seed_parts]))
        logger.info(f"Successfully loaded launchpad wallet: {wallet.pubkey()}")
        return wallet

    except (ValueError, TypeError) as e:
        logger.warning(f"Error loading LAUNCHPAD_WALLET_SEED: {e}. Using a default insecure seed for development.")
        return Keypair.from_seed(bytes([1] * 32))


try:
    # --- Ledger ---
    LEDGER_BACKEND = _get_env_choice("LEDGER_BACKEND", "memory", LEDGER_BACKENDS)
    RPC_ENDPOINT = _get_env_str("RPC_ENDPOINT", "http://localhost:8899", required=LEDGER_BACKEND == "solana")
    DEFAULT_TOKEN_DECIMALS = _get_env_int("TOKEN_DECIMALS", 6, min_val=0, max_val=18)
    CONFIRMATION_TIMEOUT = _get_env_int("CONFIRMATION_TIMEOUT", 60, min_val=1, max_val=600)
    LAUNCHPAD_WALLET = _load_launchpad_wallet()

    # --- Settlement ---
    TRANSFER_TOLERANCE = _get_env_int("TRANSFER_TOLERANCE", 100, min_val=0, max_val=10**6)

    # --- Rate Limiting ---
    RATE_LIMIT_PER_MINUTE = _get_env_int("RATE_LIMIT_PER_MINUTE", 10, min_val=1, max_val=1000)

    # --- Request signing ---
    AUTH_MAX_AGE = _get_env_int("AUTH_MAX_AGE", 300, min_val=10, max_val=3600)

    # --- Pool snapshots ---
    POOL_STATE_DIR = _get_env_str("POOL_STATE_DIR", "pool_state")

    # --- Action API Configuration ---
    ACTIONS_PORT = _get_env_int("ACTIONS_PORT", 5000, min_val=1024, max_val=65535)
    CORS_ALLOWED_ORIGINS = [o.strip() for o in _get_env_str("CORS_ALLOWED_ORIGINS", "*").split(",") if o.strip()]

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
