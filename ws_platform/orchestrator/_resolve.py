# ws_platform/orchestrator/_resolve.py
# Conflict resolution: one ResolvedItem per (canonical identity, data type).
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping, Sequence

from _logging import log

from ..id_map import coalesce_ids
from ..models import (
    RATING_MAX,
    RATING_MIN,
    Provenance,
    RawRecord,
    ResolvedDataset,
    ResolvedItem,
)
from ..policy import ResolutionPolicy

_log = log.child("resolve")

__all__ = ["reconcile", "reconcile_all", "round_half_up", "clamp_rating", "dedupe_events", "eligible"]


# --- helpers ------------------------------------------------------------------

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp_rating(x: float) -> int:
    return max(RATING_MIN, min(RATING_MAX, round_half_up(x)))


def dedupe_events(events: Iterable[int], tolerance: int) -> list[int]:
    """Sorted events with anything closer than `tolerance` to the last kept one dropped."""
    out: list[int] = []
    for e in sorted(int(x) for x in events if x and int(x) > 0):
        if out and e - out[-1] < max(1, tolerance):
            continue
        out.append(e)
    return out


def eligible(r: RawRecord, data_type: str) -> bool:
    if data_type == "ratings":
        return r.rating is not None and RATING_MIN <= r.rating <= RATING_MAX
    if data_type == "reviews":
        return bool(r.review and r.review.strip())
    if data_type == "history":
        return r.timestamp > 0
    return True


def _group(records: Iterable[RawRecord], find: Callable[[int], int] | None) -> dict[int, list[RawRecord]]:
    groups: dict[int, list[RawRecord]] = {}
    for r in records:
        if r.identity is None:
            continue
        ident = find(r.identity) if find else r.identity
        groups.setdefault(ident, []).append(r)
    return groups


# --- winner selection -------------------------------------------------------------

def _by_preference(cands: Sequence[RawRecord], policy: ResolutionPolicy) -> RawRecord:
    # same source twice: its newest record represents it
    return min(cands, key=lambda r: (policy.rank(r.source), -r.timestamp))


def _pick(strategy: str, cands: Sequence[RawRecord], policy: ResolutionPolicy) -> RawRecord:
    tol = policy.tolerance_seconds
    if strategy == "newest":
        top = max(r.timestamp for r in cands)
        tied = [r for r in cands if top - r.timestamp <= tol]
        return _by_preference(tied, policy)
    if strategy == "oldest":
        low = min(r.timestamp for r in cands)
        tied = [r for r in cands if r.timestamp - low <= tol]
        return min(tied, key=lambda r: (policy.rank(r.source), r.timestamp))
    return _by_preference(cands, policy)


# --- per data type ------------------------------------------------------------

def _base_item(identity: int, data_type: str, group: Sequence[RawRecord], winner: str,
               strategy: str, policy: ResolutionPolicy, missing: Sequence[str],
               lead: RawRecord) -> ResolvedItem:
    ranked = sorted(group, key=lambda r: (policy.rank(r.source), -r.timestamp))
    flags: set[str] = set()
    for r in group:
        flags |= r.flags
    title = lead.title or next((r.title for r in ranked if r.title), None)
    year = lead.year or next((r.year for r in ranked if r.year), None)
    return ResolvedItem(
        identity=identity,
        data_type=data_type,
        ids=coalesce_ids(lead.ids, *(r.ids for r in ranked)),
        timestamp=max(r.timestamp for r in group),
        provenance=Provenance(
            sources=tuple(sorted({r.source for r in group})),
            winner=winner,
            strategy=strategy,
            missing=tuple(sorted(missing)),
        ),
        title=title,
        year=year,
        media_type=lead.media_type,
        flags=flags,
    )


def _resolve_group(identity: int, data_type: str, group: list[RawRecord],
                   policy: ResolutionPolicy, missing: Sequence[str]) -> ResolvedItem:
    strategy = policy.strategy_for(data_type)
    tol = policy.tolerance_seconds

    if strategy == "merge" and data_type == "ratings":
        mean = sum(float(r.rating or 0) for r in group) / len(group)
        lead = _pick("newest", group, policy)
        item = _base_item(identity, data_type, group, "merged", strategy, policy, missing, lead)
        item.rating = clamp_rating(mean)
        return item

    if strategy == "merge" and data_type == "watchlist":
        with_status = [r for r in group if r.status]
        lead = _pick("newest", with_status, policy) if with_status else _pick("newest", group, policy)
        item = _base_item(identity, data_type, group, "merged", strategy, policy, missing, lead)
        item.status = lead.status
        return item

    if strategy == "merge" and data_type == "history":
        lead = _pick("newest", group, policy)
        item = _base_item(identity, data_type, group, "merged", strategy, policy, missing, lead)
        item.events = dedupe_events((r.timestamp for r in group), tol)
        return item

    if strategy == "merge":
        # reviews have no meaningful merge; fall back to preference
        strategy_used = "preference"
    else:
        strategy_used = strategy

    lead = _pick(strategy_used, group, policy)
    item = _base_item(identity, data_type, group, lead.source, strategy_used, policy, missing, lead)
    if data_type == "ratings":
        item.rating = clamp_rating(float(lead.rating or 0))
        item.timestamp = lead.timestamp
    elif data_type == "watchlist":
        item.status = lead.status
        item.timestamp = lead.timestamp
    elif data_type == "reviews":
        item.review = (lead.review or "").strip()
        item.spoiler = lead.spoiler
        item.timestamp = lead.timestamp
    elif data_type == "history":
        own = [r.timestamp for r in group if r.source == lead.source]
        item.events = dedupe_events(own, tol)
        item.timestamp = max(item.events) if item.events else lead.timestamp
    return item


def reconcile(
    records: Iterable[RawRecord],
    policy: ResolutionPolicy,
    *,
    data_type: str,
    missing_sources: Iterable[str] = (),
    find: Callable[[int], int] | None = None,
) -> dict[int, ResolvedItem]:
    """Resolve every identity group of one data type under `policy`."""
    missing = sorted(set(missing_sources or ()))
    out: dict[int, ResolvedItem] = {}
    dropped = 0
    for identity, group in sorted(_group(records, find).items()):
        ok = [r for r in group if r.data_type == data_type and eligible(r, data_type)]
        dropped += len(group) - len(ok)
        if not ok:
            continue
        out[identity] = _resolve_group(identity, data_type, ok, policy, missing)
    if dropped:
        _log.debug(f"{data_type}: {dropped} ineligible records ignored")
    return out


def reconcile_all(
    records_by_type: Mapping[str, Iterable[RawRecord]],
    policy: ResolutionPolicy,
    *,
    missing_sources: Iterable[str] = (),
    find: Callable[[int], int] | None = None,
) -> ResolvedDataset:
    missing = tuple(sorted(set(missing_sources or ())))
    ds = ResolvedDataset(missing=missing)
    for data_type, recs in records_by_type.items():
        ds.items[data_type] = reconcile(recs, policy, data_type=data_type, missing_sources=missing, find=find)
        _log.info(f"{data_type}: {len(ds.items[data_type])} items resolved ({policy.strategy_for(data_type)})")
    return ds
