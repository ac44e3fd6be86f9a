"""
Custom Exception Classes for the IDO Launchpad

This module defines the failure taxonomy of pool operations. Every failure is
synchronous and aborts the operation. Guard failures leave the pool untouched;
a settlement that fails between two transfers keeps the legs already paid.
Each launchpad exception carries a stable ``code`` string so that outer layers
(the MCP server, the HTTP action API) can report it without parsing messages.

Exception Categories:
- Authorization Errors: caller is not an admin or not the proceeds recipient,
  or the request signature does not prove the caller's key
- Temporal Errors: operation called outside its period, or bad timestamps
- Pool Configuration Errors: supply, protected amount or token pair invalid
- Purchase Validation Errors: zero or below-minimum purchase amounts
- Claim Validation Errors: double claim or nothing to claim
- Settlement Errors: rounding shortfall above tolerance, repeated withdraw
- Payment Errors: an inbound payment transaction credited twice
- Ledger Errors: failures reported by the ledger gateway
- Operational Errors: configuration, rate limiting and input validation

Usage:
    The core raises these exceptions and never retries. Callers fix the
    condition (for instance wait for the period to open) and resubmit.
    ``ToleranceExceededError`` signals a broken conservation invariant rather
    than user error and is logged at critical level by the server.
"""


class LaunchpadError(Exception):
    """Base class for every failure raised by a pool operation."""

    code = "launchpad-error"


class PoolNotFoundError(LaunchpadError):
    """Raised when a pool handle does not name a known pool."""

    code = "pool-not-found"


class PoolPausedError(LaunchpadError):
    """Raised when a period-gated operation is attempted on a paused pool."""

    code = "paused"


# --- Authorization ---

class AuthorizationError(LaunchpadError):
    code = "unauthorized"


class NotAdminError(AuthorizationError):
    """Raised when the caller is not in the pool's admin set."""

    code = "not-admin"


class NotRecipientError(AuthorizationError):
    """Raised when someone other than the purchase token recipient withdraws."""

    code = "not-recipient"


class InvalidSignatureError(AuthorizationError):
    """Raised when a request signature is malformed, expired, replayed or not the caller's."""

    code = "invalid-signature"


# --- Temporal / period ---

class TemporalError(LaunchpadError):
    code = "temporal"


class NotReadyError(TemporalError):
    """Raised when the pool has not been marked ready yet."""

    code = "not-ready"


class AlreadyReadyError(TemporalError):
    """Raised when an Edit-period operation is called after the pool is ready."""

    code = "already-ready"


class AlreadyStartedError(TemporalError):
    """Raised when the pool is marked ready at or after the IDO start time."""

    code = "already-started"


class NotStartedError(TemporalError):
    """Raised when a purchase is attempted before the IDO start time."""

    code = "not-started"


class AlreadyFinishedError(TemporalError):
    """Raised when a purchase is attempted at or after the IDO end time."""

    code = "already-finished"


class ClaimNotStartedError(TemporalError):
    """Raised when claim or withdraw is attempted before the claim start time."""

    code = "claim-not-started"


class InvalidTimesError(TemporalError):
    """Raised unless ido_start_time < ido_end_time <= claim_start_time."""

    code = "invalid-times"


# --- Pool configuration ---

class PoolConfigurationError(LaunchpadError):
    code = "invalid-configuration"


class InvalidSupplyError(PoolConfigurationError):
    """Raised when the vault's supply token balance differs from ido_supply."""

    code = "invalid-supply"


class ProtectedExceedsCapError(PoolConfigurationError):
    """Raised when the whitelist aggregate would exceed the hard cap."""

    code = "protected-exceeds-cap"


class InvalidAssetPairError(PoolConfigurationError):
    """Raised when the supply token and purchase token are the same."""

    code = "invalid-fungible-asset-pair"


# --- Purchase validation ---

class PurchaseValidationError(LaunchpadError):
    code = "invalid-purchase"


class InvalidAmountError(PurchaseValidationError):
    """Raised for zero amounts where a positive amount is required."""

    code = "invalid-amount"


class BelowMinimumError(PurchaseValidationError):
    """Raised when a purchase is below the pool's minimum purchase amount."""

    code = "below-minimum"


# --- Claim validation ---

class ClaimValidationError(LaunchpadError):
    code = "invalid-claim"


class AlreadyClaimedError(ClaimValidationError):
    code = "already-claimed"


class NothingClaimableError(ClaimValidationError):
    """Raised when an address has neither allocation nor refund to claim."""

    code = "nothing-claimable"


# --- Settlement ---

class SettlementError(LaunchpadError):
    code = "settlement"


class ToleranceExceededError(SettlementError):
    """Raised when a vault is short by more than the rounding tolerance."""

    code = "tolerance-exceeded"


class AlreadyWithdrawnError(SettlementError):
    """Raised when proceeds of a pool are withdrawn a second time."""

    code = "already-withdrawn"


# --- Payments ---

class PaymentAlreadyUsedError(LaunchpadError):
    """Raised when a payment transaction was already credited to the pool."""

    code = "payment-already-used"


# --- Ledger gateway ---

class TransferFailedError(Exception):
    """Raised if a token transfer fails on the ledger."""


class InsufficientFundsError(TransferFailedError):
    """Raised when the source account cannot cover a transfer."""


class InvalidTransactionError(TransferFailedError):
    """Raised when a payment transaction does not pay the expected amount to the vault."""


class TokenBalanceError(Exception):
    """Raised when there are issues fetching a token balance from the ledger."""


# --- Operational ---

class RateLimitExceededError(Exception):
    """Raised when the rate limit is exceeded for a caller."""


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""


class ValidationError(Exception):
    """Raised when input validation fails."""
