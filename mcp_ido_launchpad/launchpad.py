"""
IDO Launchpad - Pool Arena and Entry Operations

This module owns every pool of the launchpad and exposes the operations callers
use on them. Each pool is an independently addressable aggregate identified by
its handle (the address of its vault account); every operation takes the handle
explicitly.

Pool Lifecycle:
1. create_pool: the creator becomes the first admin, a vault is opened
2. Edit period: deposit_supply_token, update_pool, update_whitelist
3. set_pool_ready: vault holds exactly ido_supply, whitelist within the cap
4. Ido period (ido_start_time <= now < ido_end_time): purchase
5. Claim period (now >= claim_start_time): claim, withdraw

Execution Model:
- Every call runs under one lock, standing in for the ledger's serializable
  transaction: calls never interleave.
- Guards and transfer planning happen before any state is written, so a
  rejected call leaves the pool untouched.
- Claim and withdraw pay in legs. Each paid leg is recorded and snapshotted
  before the next one runs; a retry after a failed leg pays only what is left.
- Purchases and deposits carry the payment that funded them. A payment is
  credited once per pool.
- Committed pools are snapshotted to the PoolStore when one is configured.
"""
import secrets
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from mcp_ido_launchpad import access, allocation, periods, purchases, settlement, whitelist
from mcp_ido_launchpad.config import TRANSFER_TOLERANCE
from mcp_ido_launchpad.errors import (
    InvalidAmountError,
    InvalidAssetPairError,
    InvalidSupplyError,
    PaymentAlreadyUsedError,
    PoolNotFoundError,
    ProtectedExceedsCapError,
    ValidationError,
)
from mcp_ido_launchpad.events import EventLog, PoolCreated
from mcp_ido_launchpad.ledger import LedgerGateway
from mcp_ido_launchpad.pool_store import PoolStore
from mcp_ido_launchpad.schemas import Claimable, Period, Pool, PoolUpdate, PoolView
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class Launchpad:
    def __init__(
        self,
        gateway: LedgerGateway,
        events: Optional[EventLog] = None,
        store: Optional[PoolStore] = None,
        tolerance: int = TRANSFER_TOLERANCE,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.gateway = gateway
        self.events = events if events is not None else EventLog()
        self.store = store
        self.tolerance = tolerance
        self._clock = clock
        self._lock = threading.RLock()
        self._pools: Dict[str, Pool] = store.load_all() if store else {}
        for pool in self._pools.values():
            self._reopen_vault(pool)

    # --- Helpers ---

    def _now(self) -> int:
        return int(self._clock() if self._clock else time.time())

    def _pool(self, pool_id: str) -> Pool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise PoolNotFoundError(f"Pool {pool_id} not found")
        return pool

    def _reopen_vault(self, pool: Pool) -> None:
        if not pool.vault_seed:
            logger.warning(f"Pool {pool.pool_id} has no vault seed; its vault cannot pay out")
            return
        vault = self.gateway.open_vault(pool.vault_seed)
        if vault != pool.vault:
            logger.error(f"Vault seed of pool {pool.pool_id} derives {vault}, expected {pool.vault}")

    def _commit(self, pool: Pool) -> None:
        """Snapshots the pool. The in-memory state stays authoritative if the write fails."""
        if self.store is None:
            return
        try:
            self.store.save(pool)
        except OSError as e:
            logger.exception(f"Failed to snapshot pool {pool.pool_id}: {e}")

    def _check_payment(self, pool: Pool, payment: Optional[str]) -> None:
        if payment and payment in pool.payments:
            raise PaymentAlreadyUsedError(f"Payment {payment} was already credited to pool {pool.pool_id}")

    def _record_payment(self, pool: Pool, payment: Optional[str]) -> None:
        if payment:
            pool.payments.append(payment)

    # --- Entry operations ---

    def create_pool(
        self,
        creator: str,
        supply_token: str,
        purchase_token: str,
        purchase_token_recipient: str,
        ido_start_time: int,
        ido_end_time: int,
        claim_start_time: int,
        hard_cap: int,
        ido_supply: int,
        minimum_purchase_amount: int,
    ) -> str:
        """
        Creates a pool in the Edit period and returns its handle.

        Raises:
            InvalidAssetPairError: If supply and purchase tokens are the same.
            InvalidTimesError: Unless ido_start_time < ido_end_time <= claim_start_time.
            InvalidAmountError: If the hard cap is zero or an amount is negative.
        """
        if supply_token == purchase_token:
            raise InvalidAssetPairError(f"Supply token and purchase token must differ, got {supply_token}")
        periods.validate_times(ido_start_time, ido_end_time, claim_start_time)
        if hard_cap <= 0:
            raise InvalidAmountError("Hard cap must be positive")
        if ido_supply < 0 or minimum_purchase_amount < 0:
            raise InvalidAmountError("IDO supply and minimum purchase amount cannot be negative")

        with self._lock:
            vault_seed = secrets.token_hex(16)
            vault = self.gateway.open_vault(vault_seed)
            pool = Pool(
                pool_id=vault,
                vault=vault,
                vault_seed=vault_seed,
                creator=creator,
                supply_token=supply_token,
                purchase_token=purchase_token,
                purchase_token_recipient=purchase_token_recipient,
                admins=[creator],
                ido_start_time=ido_start_time,
                ido_end_time=ido_end_time,
                claim_start_time=claim_start_time,
                hard_cap=hard_cap,
                ido_supply=ido_supply,
                minimum_purchase_amount=minimum_purchase_amount,
                created_at=self._now(),
            )
            self._pools[pool.pool_id] = pool
            self._commit(pool)
            self.events.emit(PoolCreated(pool=pool.pool_id, supply_token=supply_token, purchase_token=purchase_token))
            logger.info(f"Pool {pool.pool_id} created by {creator}: hard_cap={hard_cap}, ido_supply={ido_supply}")
            return pool.pool_id

    def add_pool_admins(self, pool_id: str, caller: str, admins: Iterable[str]) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            access.add_admins(pool, caller, admins)
            self._commit(pool)
            logger.info(f"Admins of pool {pool_id} updated by {caller}: {pool.admins}")

    def remove_pool_admins(self, pool_id: str, caller: str, admins: Iterable[str]) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            access.remove_admins(pool, caller, admins)
            self._commit(pool)
            if not pool.admins:
                logger.warning(f"Pool {pool_id} has no admins left")
            logger.info(f"Admins of pool {pool_id} updated by {caller}: {pool.admins}")

    def pause_pool(self, pool_id: str, caller: str) -> None:
        self._set_paused(pool_id, caller, True)

    def unpause_pool(self, pool_id: str, caller: str) -> None:
        self._set_paused(pool_id, caller, False)

    def _set_paused(self, pool_id: str, caller: str, paused: bool) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            access.require_admin(pool, caller)
            pool.paused = paused
            self._commit(pool)
            logger.info(f"Pool {pool_id} {'paused' if paused else 'unpaused'} by {caller}")

    def deposit_supply_token(self, pool_id: str, caller: str, amount: int, payment: Optional[str] = None) -> None:
        """
        Credits ``amount`` of supply token paid by ``caller`` into the vault.

        ``payment`` is the ledger's proof of the caller's own transfer (a
        transaction signature on Solana); each payment is credited once.
        """
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_edit_period(pool)
            access.require_admin(pool, caller)
            if amount <= 0:
                raise InvalidAmountError("Deposit amount must be positive")
            self._check_payment(pool, payment)
            self.gateway.collect(pool.supply_token, caller, pool.vault, amount, payment)
            self._record_payment(pool, payment)
            self._commit(pool)
            logger.info(f"{caller} deposited {amount} of supply token into pool {pool_id}")

    def update_pool(self, pool_id: str, caller: str, **changes) -> Pool:
        """
        Changes the configuration of a pool during the Edit period.

        Accepted keyword arguments are the fields of PoolUpdate.

        Raises:
            ValidationError: For unknown fields or invalid values.
            InvalidTimesError: If the resulting timestamps are out of order.
            InvalidAmountError: If the resulting hard cap is zero.
        """
        try:
            update = PoolUpdate.model_validate(changes)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid pool update: {e}")

        with self._lock:
            pool = self._pool(pool_id)
            periods.require_edit_period(pool)
            access.require_admin(pool, caller)

            fields = update.model_dump(exclude_none=True)
            candidate = pool.model_copy(update=fields)
            periods.validate_times(candidate.ido_start_time, candidate.ido_end_time, candidate.claim_start_time)
            if candidate.hard_cap <= 0:
                raise InvalidAmountError("Hard cap must be positive")

            for name, value in fields.items():
                setattr(pool, name, value)
            self._commit(pool)
            logger.info(f"Pool {pool_id} updated by {caller}: {fields}")
            return pool.model_copy(deep=True)

    def update_whitelist(self, pool_id: str, caller: str, addresses: Iterable[str], protected_amount: int) -> int:
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_edit_period(pool)
            access.require_admin(pool, caller)
            total = whitelist.update_whitelist(pool, list(addresses), protected_amount)
            self._commit(pool)
            logger.info(f"Whitelist of pool {pool_id} updated by {caller}: protected_amount={total}")
            return total

    def set_pool_ready(self, pool_id: str, caller: str) -> None:
        """
        Moves the pool out of the Edit period. Irreversible.

        Raises:
            AlreadyStartedError: If the IDO start time has been reached.
            InvalidSupplyError: If the vault does not hold exactly ido_supply.
            ProtectedExceedsCapError: If the whitelist exceeds the hard cap.
        """
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_edit_period(pool)
            access.require_admin(pool, caller)
            periods.require_before_start(pool, self._now())

            balance = self.gateway.balance_of(pool.supply_token, pool.vault)
            if balance != pool.ido_supply:
                raise InvalidSupplyError(
                    f"Vault of pool {pool_id} holds {balance} of supply token, expected exactly {pool.ido_supply}"
                )
            if pool.protected_amount > pool.hard_cap:
                raise ProtectedExceedsCapError(
                    f"Protected amount {pool.protected_amount} exceeds hard cap {pool.hard_cap} in pool {pool_id}"
                )

            pool.ready = True
            self._commit(pool)
            logger.info(f"Pool {pool_id} marked ready by {caller}")

    def purchase(self, pool_id: str, buyer: str, amount: int, payment: Optional[str] = None) -> Claimable:
        """
        Buys into the sale with ``amount`` of purchase token.

        ``payment`` proves the buyer's transfer into the vault where the ledger
        needs it (see deposit_supply_token).

        Returns:
            The buyer's claimable snapshot right after the purchase.
        """
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_ido_period(pool, self._now())
            purchases.validate_purchase_amount(pool, amount)
            self._check_payment(pool, payment)
            self.gateway.collect(pool.purchase_token, buyer, pool.vault, amount, payment)
            self._record_payment(pool, payment)
            purchases.record_purchase(pool, buyer, amount)
            self._commit(pool)
            logger.info(
                f"Purchase of {amount} by {buyer} in pool {pool_id}: "
                f"total_purchased={pool.total_purchased}, total_purchased_protected={pool.total_purchased_protected}"
            )
            return allocation.get_claimable(pool, buyer)

    def claim(self, pool_id: str, address: str) -> Claimable:
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_claim_period(pool, self._now())
            result = settlement.claim(
                self.gateway, self.events, pool, address, self.tolerance, checkpoint=lambda: self._commit(pool)
            )
            self._commit(pool)
            return result

    def withdraw(self, pool_id: str, caller: str) -> Tuple[int, int]:
        with self._lock:
            pool = self._pool(pool_id)
            periods.require_claim_period(pool, self._now())
            result = settlement.withdraw(
                self.gateway, self.events, pool, caller, self.tolerance, checkpoint=lambda: self._commit(pool)
            )
            self._commit(pool)
            return result

    # --- Queries ---

    def list_pools(self) -> List[str]:
        with self._lock:
            return list(self._pools)

    def get_pool(self, pool_id: str) -> Pool:
        with self._lock:
            return self._pool(pool_id).model_copy(deep=True)

    def get_pool_admins(self, pool_id: str) -> List[str]:
        with self._lock:
            return list(self._pool(pool_id).admins)

    def get_period(self, pool_id: str) -> Period:
        with self._lock:
            return periods.current_period(self._pool(pool_id), self._now())

    def get_claimable_amount(self, address: str, pool_id: str) -> Claimable:
        with self._lock:
            return allocation.get_claimable(self._pool(pool_id), address)

    def get_pools_view(self, pool_ids: Iterable[str]) -> List[PoolView]:
        with self._lock:
            now = self._now()
            views = []
            for pool_id in pool_ids:
                pool = self._pool(pool_id)
                views.append(PoolView(
                    pool_id=pool.pool_id,
                    supply_token=pool.supply_token,
                    purchase_token=pool.purchase_token,
                    purchase_token_recipient=pool.purchase_token_recipient,
                    period=periods.current_period(pool, now),
                    paused=pool.paused,
                    ready=pool.ready,
                    withdrawn=pool.withdrawn,
                    ido_start_time=pool.ido_start_time,
                    ido_end_time=pool.ido_end_time,
                    claim_start_time=pool.claim_start_time,
                    hard_cap=pool.hard_cap,
                    ido_supply=pool.ido_supply,
                    minimum_purchase_amount=pool.minimum_purchase_amount,
                    protected_amount=pool.protected_amount,
                    total_purchased=pool.total_purchased,
                    total_purchased_protected=pool.total_purchased_protected,
                    participants=len(pool.purchased),
                    supply_token_balance=self.gateway.balance_of(pool.supply_token, pool.vault),
                    purchase_token_balance=self.gateway.balance_of(pool.purchase_token, pool.vault),
                ))
            return views
