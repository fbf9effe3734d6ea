# scanner.py
"""Enumerate a staker's pending withdrawals and classify their cooldown.

Withdraw slots are addressed by index (0..255), so the set of a staker's
withdrawals is a sparse array. The scanner derives the address for every
index below the search bound, fetches them independently, and merges the
results back by index. An empty slot never ends the search early.
"""
import asyncio
import enum
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from solders.pubkey import Pubkey

import config
from accounts import PendingWithdraw, decode_pending_withdraw
from errors import DecodeError, InvalidArgument
from pda import AddressLike, derive_pending_withdraw_address, to_pubkey

logger = logging.getLogger(__name__)

DEFAULT_MAX_WITHDRAWALS_TO_SEARCH = config.DEFAULT_MAX_WITHDRAWALS_TO_SEARCH
MAX_SEARCH_BOUND = 256

FetchFn = Callable[[Pubkey], Optional[bytes]]
AsyncFetchFn = Callable[[Pubkey], Awaitable[Optional[bytes]]]


class WithdrawStatus(enum.Enum):
    PENDING = "pending"
    READY = "ready"


@dataclass(frozen=True)
class PendingWithdrawView:
    """A decoded withdrawal plus its cooldown status at a given instant."""
    address: Pubkey
    record: PendingWithdraw
    status: WithdrawStatus
    created_at: int
    time_elapsed: int
    time_remaining: int
    time_since_ready: int

    @property
    def is_ready(self) -> bool:
        return self.status is WithdrawStatus.READY

    @property
    def withdraw_index(self) -> int:
        return self.record.withdraw_index


@dataclass(frozen=True)
class WithdrawSummary:
    total: int
    ready: int
    cooling_down: int
    ready_orca_amount: int
    cooling_down_orca_amount: int


def validate_search_bound(search_bound) -> int:
    if isinstance(search_bound, bool) or not isinstance(search_bound, int):
        raise InvalidArgument(f"search bound must be an integer, got {search_bound!r}")
    if not 0 <= search_bound <= MAX_SEARCH_BOUND:
        raise InvalidArgument(f"search bound out of range [0, {MAX_SEARCH_BOUND}]: {search_bound}")
    return search_bound


def validate_cool_down(cool_down_period_s) -> int:
    if isinstance(cool_down_period_s, bool) or not isinstance(cool_down_period_s, int):
        raise InvalidArgument(f"cool down period must be an integer, got {cool_down_period_s!r}")
    if cool_down_period_s < 0:
        raise InvalidArgument(f"cool down period must be non-negative, got {cool_down_period_s}")
    return cool_down_period_s


def classify(
    record: PendingWithdraw,
    cool_down_period_s: int,
    now: Optional[int] = None,
    address: Optional[Pubkey] = None,
) -> PendingWithdrawView:
    """Compute status and timings for `record` at `now` (defaults to wall clock).

    `time_elapsed` is not clamped: with clock skew, or a cooldown changed
    after the withdrawal was created, it can be negative.
    """
    validate_cool_down(cool_down_period_s)
    now = int(time.time()) if now is None else int(now)
    ts = record.withdrawable_timestamp
    created_at = ts - cool_down_period_s
    is_ready = now >= ts
    return PendingWithdrawView(
        address=address,
        record=record,
        status=WithdrawStatus.READY if is_ready else WithdrawStatus.PENDING,
        created_at=created_at,
        time_elapsed=now - created_at,
        time_remaining=max(0, ts - now),
        time_since_ready=max(0, now - ts),
    )


def pending_withdraw_addresses(
    staker: AddressLike,
    search_bound: int = DEFAULT_MAX_WITHDRAWALS_TO_SEARCH,
    program_id: Optional[AddressLike] = None,
) -> List[Tuple[int, Pubkey]]:
    search_bound = validate_search_bound(search_bound)
    return [
        (i, derive_pending_withdraw_address(staker, i, program_id=program_id)[0])
        for i in range(search_bound)
    ]


def _decode_slot(staker: Pubkey, index: int, address: Pubkey, raw: Optional[bytes]) -> Optional[PendingWithdraw]:
    if raw is None:
        return None
    try:
        record = decode_pending_withdraw(raw)
    except DecodeError as e:
        # closed or foreign account at this address
        logger.debug("scanner: skipping index %d at %s: %s", index, address, e)
        return None
    if record.withdraw_index != index or record.unstaker != staker:
        logger.warning(
            "scanner: skipping index %d at %s: record belongs to index %d of %s",
            index,
            address,
            record.withdraw_index,
            record.unstaker,
        )
        return None
    return record


def _fetch_slot(fetch_account_bytes: FetchFn, index: int, address: Pubkey) -> Optional[bytes]:
    try:
        return fetch_account_bytes(address)
    except Exception as e:
        logger.warning("scanner: fetch failed for index %d at %s: %r; treating as absent", index, address, e)
        return None


def _merge(
    staker: Pubkey,
    slots: Sequence[Tuple[int, Pubkey]],
    raws: Sequence[Optional[bytes]],
    cool_down_period_s: int,
    now: int,
) -> List[PendingWithdrawView]:
    # slots are in index order; raws line up with them
    views = []
    for (index, address), raw in zip(slots, raws):
        record = _decode_slot(staker, index, address, raw)
        if record is None:
            continue
        views.append(classify(record, cool_down_period_s, now=now, address=address))
    return views


def scan_pending_withdrawals(
    staker: AddressLike,
    fetch_account_bytes: FetchFn,
    cool_down_period_s: int,
    search_bound: int = DEFAULT_MAX_WITHDRAWALS_TO_SEARCH,
    now: Optional[int] = None,
    program_id: Optional[AddressLike] = None,
    max_workers: int = 8,
) -> List[PendingWithdrawView]:
    """Find the staker's pending withdrawals among indices `0..search_bound-1`.

    `fetch_account_bytes(address)` returns the raw account data or None when
    the account does not exist. Lookups run concurrently; the result is
    ordered by withdraw index. A lookup that raises is logged and the slot is
    treated as absent; no retries are made. A record whose stored index or
    unstaker disagrees with the slot it was found at is skipped.
    """
    search_bound = validate_search_bound(search_bound)
    validate_cool_down(cool_down_period_s)
    slots = pending_withdraw_addresses(staker, search_bound, program_id=program_id)
    if not slots:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(slots)))) as pool:
        futures = [pool.submit(_fetch_slot, fetch_account_bytes, i, addr) for i, addr in slots]
        raws = [f.result() for f in futures]

    views = _merge(to_pubkey(staker), slots, raws, cool_down_period_s, int(time.time()) if now is None else int(now))
    logger.debug("scanner.scan_pending_withdrawals staker=%s searched=%d found=%d", staker, len(slots), len(views))
    return views


async def scan_pending_withdrawals_async(
    staker: AddressLike,
    fetch_account_bytes: AsyncFetchFn,
    cool_down_period_s: int,
    search_bound: int = DEFAULT_MAX_WITHDRAWALS_TO_SEARCH,
    now: Optional[int] = None,
    program_id: Optional[AddressLike] = None,
) -> List[PendingWithdrawView]:
    """Async twin of `scan_pending_withdrawals` for an awaitable fetch."""
    search_bound = validate_search_bound(search_bound)
    validate_cool_down(cool_down_period_s)
    slots = pending_withdraw_addresses(staker, search_bound, program_id=program_id)

    async def fetch(index: int, address: Pubkey) -> Optional[bytes]:
        try:
            return await fetch_account_bytes(address)
        except Exception as e:
            logger.warning("scanner: fetch failed for index %d at %s: %r; treating as absent", index, address, e)
            return None

    raws = await asyncio.gather(*(fetch(i, addr) for i, addr in slots))
    views = _merge(to_pubkey(staker), slots, raws, cool_down_period_s, int(time.time()) if now is None else int(now))
    logger.debug("scanner.scan_pending_withdrawals_async staker=%s searched=%d found=%d", staker, len(slots), len(views))
    return views


def summarize(views: Iterable[PendingWithdrawView]) -> WithdrawSummary:
    views = list(views)
    ready = [v for v in views if v.is_ready]
    cooling = [v for v in views if not v.is_ready]
    return WithdrawSummary(
        total=len(views),
        ready=len(ready),
        cooling_down=len(cooling),
        ready_orca_amount=sum(v.record.withdrawable_orca_amount for v in ready),
        cooling_down_orca_amount=sum(v.record.withdrawable_orca_amount for v in cooling),
    )


def format_duration(seconds: int) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"
