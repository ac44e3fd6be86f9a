"""
Pydantic Data Models for the IDO Launchpad

This module defines the data models of the launchpad. A ``Pool`` is the single
source of truth of one token sale; everything else is derived from it.

Key Components:
- Period: the derived sale period (never stored on the pool)
- Pool: configuration, flags, whitelist and purchase ledgers of one sale
- Claimable: point-in-time entitlement of one address, computed on demand
- PoolView: bulk display snapshot returned by get_pools_view

Per-address maps use "absent == zero" semantics: read them through the
``protected_of``, ``purchased_of`` and ``has_claimed`` accessors rather than
indexing the dicts directly.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Period(str, Enum):
    edit = "edit"
    pending = "pending"
    ido = "ido"
    ended = "ended"
    claim = "claim"


class Pool(BaseModel):
    pool_id: str
    vault: str
    vault_seed: str = ""
    creator: str
    supply_token: str
    purchase_token: str
    purchase_token_recipient: str
    admins: List[str]

    ido_start_time: int
    ido_end_time: int
    claim_start_time: int
    hard_cap: int = Field(ge=0)
    ido_supply: int = Field(ge=0)
    minimum_purchase_amount: int = Field(ge=0)

    paused: bool = False
    ready: bool = False
    withdrawn: bool = False
    created_at: int = 0

    whitelist: Dict[str, int] = Field(default_factory=dict)
    protected_amount: int = 0
    purchased: Dict[str, int] = Field(default_factory=dict)
    total_purchased: int = 0
    total_purchased_protected: int = 0
    claimed: Dict[str, bool] = Field(default_factory=dict)

    # Settlement legs already paid. A retried claim or withdraw skips them.
    supply_claimed: Dict[str, bool] = Field(default_factory=dict)
    refund_claimed: Dict[str, bool] = Field(default_factory=dict)
    supply_returned: bool = False
    payments: List[str] = Field(default_factory=list)

    def is_admin(self, address: str) -> bool:
        return address in self.admins

    def protected_of(self, address: str) -> int:
        return self.whitelist.get(address, 0)

    def purchased_of(self, address: str) -> int:
        return self.purchased.get(address, 0)

    def has_claimed(self, address: str) -> bool:
        return self.claimed.get(address, False)


class PoolUpdate(BaseModel):
    """Edit-period changes to a pool's configuration. Unset fields are kept."""

    model_config = ConfigDict(extra="forbid")

    ido_start_time: Optional[int] = None
    ido_end_time: Optional[int] = None
    claim_start_time: Optional[int] = None
    hard_cap: Optional[int] = Field(default=None, ge=0)
    ido_supply: Optional[int] = Field(default=None, ge=0)
    minimum_purchase_amount: Optional[int] = Field(default=None, ge=0)
    purchase_token_recipient: Optional[str] = None


class Claimable(BaseModel):
    address: str
    protected_amount: int = 0
    claimed: bool = False
    claimable: int = 0
    purchased: int = 0
    refund: int = 0


class PoolView(BaseModel):
    pool_id: str
    supply_token: str
    purchase_token: str
    purchase_token_recipient: str
    period: Period
    paused: bool
    ready: bool
    withdrawn: bool
    ido_start_time: int
    ido_end_time: int
    claim_start_time: int
    hard_cap: int
    ido_supply: int
    minimum_purchase_amount: int
    protected_amount: int
    total_purchased: int
    total_purchased_protected: int
    participants: int
    supply_token_balance: int
    purchase_token_balance: int
