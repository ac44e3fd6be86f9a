"""Admin set of a pool. Membership gates every mutating pool operation."""
from typing import Iterable

from mcp_ido_launchpad.errors import NotAdminError
from mcp_ido_launchpad.schemas import Pool


def require_admin(pool: Pool, caller: str) -> None:
    if not pool.is_admin(caller):
        raise NotAdminError(f"{caller} is not an admin of pool {pool.pool_id}")


def add_admins(pool: Pool, caller: str, addresses: Iterable[str]) -> None:
    require_admin(pool, caller)
    for address in addresses:
        if address not in pool.admins:
            pool.admins.append(address)


def remove_admins(pool: Pool, caller: str, addresses: Iterable[str]) -> None:
    """Remove admins. Removing every admin is allowed and locks the pool."""
    require_admin(pool, caller)
    to_remove = set(addresses)
    pool.admins = [a for a in pool.admins if a not in to_remove]
