"""
Period state machine of a pool.

Only ``ready`` is stored. The Ido and Claim periods are derived from
``ready`` and the current time:

    edit -> pending -> ido -> ended -> claim

``paused`` overrides every guard below.
"""
from mcp_ido_launchpad.errors import (
    AlreadyFinishedError,
    AlreadyReadyError,
    AlreadyStartedError,
    ClaimNotStartedError,
    InvalidTimesError,
    NotReadyError,
    NotStartedError,
    PoolPausedError,
)
from mcp_ido_launchpad.schemas import Period, Pool


def validate_times(ido_start_time: int, ido_end_time: int, claim_start_time: int) -> None:
    if not (ido_start_time < ido_end_time <= claim_start_time):
        raise InvalidTimesError(
            f"Expected ido_start_time < ido_end_time <= claim_start_time, got "
            f"{ido_start_time}, {ido_end_time}, {claim_start_time}"
        )


def current_period(pool: Pool, now: int) -> Period:
    if not pool.ready:
        return Period.edit
    if now < pool.ido_start_time:
        return Period.pending
    if now < pool.ido_end_time:
        return Period.ido
    if now < pool.claim_start_time:
        return Period.ended
    return Period.claim


def require_not_paused(pool: Pool) -> None:
    if pool.paused:
        raise PoolPausedError(f"Pool {pool.pool_id} is paused")


def require_edit_period(pool: Pool) -> None:
    require_not_paused(pool)
    if pool.ready:
        raise AlreadyReadyError(f"Pool {pool.pool_id} is already ready")


def require_before_start(pool: Pool, now: int) -> None:
    if now >= pool.ido_start_time:
        raise AlreadyStartedError(
            f"Pool {pool.pool_id} IDO already started at {pool.ido_start_time} (now {now})"
        )


def require_ido_period(pool: Pool, now: int) -> None:
    require_not_paused(pool)
    if not pool.ready:
        raise NotReadyError(f"Pool {pool.pool_id} is not ready")
    if now < pool.ido_start_time:
        raise NotStartedError(f"Pool {pool.pool_id} IDO starts at {pool.ido_start_time} (now {now})")
    if now >= pool.ido_end_time:
        raise AlreadyFinishedError(f"Pool {pool.pool_id} IDO ended at {pool.ido_end_time} (now {now})")


def require_claim_period(pool: Pool, now: int) -> None:
    require_not_paused(pool)
    if not pool.ready:
        raise NotReadyError(f"Pool {pool.pool_id} is not ready")
    if now < pool.claim_start_time:
        raise ClaimNotStartedError(
            f"Pool {pool.pool_id} claim starts at {pool.claim_start_time} (now {now})"
        )
