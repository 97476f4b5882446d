# ws_platform/orchestrator/_rules.py
# Post-resolution rules, applied in a fixed order to the resolved dataset.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from _logging import log

from ..models import Provenance, ResolvedDataset, ResolvedItem
from ._types import RuleContext

_log = log.child("rules")

Rule = Callable[[ResolvedDataset, RuleContext], ResolvedDataset]

DAY = 86400


def mark_rated_as_watched(ds: ResolvedDataset, ctx: RuleContext) -> ResolvedDataset:
    history = ds.of("history")
    added = 0
    for ident, rated in sorted(ds.of("ratings").items()):
        if ident in history:
            continue
        # undated ratings count as watched now
        when = rated.timestamp if rated.timestamp > 0 else int(ctx.now)
        history[ident] = ResolvedItem(
            identity=ident,
            data_type="history",
            ids=dict(rated.ids),
            timestamp=when,
            provenance=Provenance(
                sources=rated.provenance.sources,
                winner="rated",
                strategy="rule",
                missing=rated.provenance.missing,
            ),
            events=[when],
            title=rated.title,
            year=rated.year,
            media_type=rated.media_type,
            flags=set(rated.flags),
        )
        added += 1
    if added:
        _log.info(f"mark_rated_as_watched: {added} history items synthesized")
    return ds


def remove_watched_from_watchlists(ds: ResolvedDataset, ctx: RuleContext) -> ResolvedDataset:
    watched = set(ds.of("history"))
    hits = sorted(i for i in ds.of("watchlist") if i in watched)
    for ident in hits:
        ds.prune("watchlist", ident)
    if hits:
        _log.info(f"remove_watched_from_watchlists: {len(hits)} watchlist items pruned")
    return ds


def remove_watchlist_items_older_than_days(ds: ResolvedDataset, ctx: RuleContext) -> ResolvedDataset:
    days = getattr(ctx.options, "remove_watchlist_items_older_than_days", None)
    if days is None:
        return ds
    cutoff = int(ctx.now) - int(days) * DAY
    stale = sorted(i for i, it in ds.of("watchlist").items() if 0 < it.timestamp < cutoff)
    for ident in stale:
        ds.prune("watchlist", ident)
    if stale:
        _log.info(f"remove_watchlist_items_older_than_days({days}): {len(stale)} watchlist items pruned")
    return ds


def _enabled(opt: str) -> Callable[[Any], bool]:
    def check(options: Any) -> bool:
        v = getattr(options, opt, None)
        return v is not None and v is not False
    return check


# Order matters: synthesized history feeds the watched filter.
RULES: list[tuple[str, Callable[[Any], bool], Rule]] = [
    ("mark_rated_as_watched", _enabled("mark_rated_as_watched"), mark_rated_as_watched),
    ("remove_watched_from_watchlists", _enabled("remove_watched_from_watchlists"), remove_watched_from_watchlists),
    ("remove_watchlist_items_older_than_days", _enabled("remove_watchlist_items_older_than_days"), remove_watchlist_items_older_than_days),
]


def apply_rules(ds: ResolvedDataset, ctx: RuleContext) -> ResolvedDataset:
    for name, is_on, rule in RULES:
        if not is_on(ctx.options):
            continue
        ds = rule(ds, ctx)
        ctx.notes.append(name)
    return ds


__all__ = [
    "RULES", "apply_rules",
    "mark_rated_as_watched", "remove_watched_from_watchlists", "remove_watchlist_items_older_than_days",
]
