from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from _logging import log

from ..errors import UnrepresentableTarget
from ..id_map import keys_for_ids
from ..models import ExcludedItem, Operation, Plan, Provenance, RawRecord, ResolvedDataset, ResolvedItem
from ._resolve import clamp_rating, dedupe_events

# Distribution planning: resolved dataset vs one target's own snapshot -> ordered operations.
# Capabilities come from providers/sync/_mod_*.py; nothing here knows service names.

_log = log.child("planner")


@dataclass
class PlanOptions:
    force_full_sync: bool = False
    tolerance_seconds: int = 3600
    pending: Set[str] = field(default_factory=set)
    history_planned: bool = True


@dataclass
class _Held:
    """What the target already holds for one identity in one collection."""
    rating: Any = None
    status: Optional[str] = None
    review: Optional[str] = None
    events: List[int] = field(default_factory=list)
    ids: Dict[str, str] = field(default_factory=dict)


# Snapshot index
def index_snapshot(records: Iterable[RawRecord], find: Callable[[int], int] | None = None) -> Dict[int, _Held]:
    out: Dict[int, _Held] = {}
    for r in records or ():
        if r.identity is None:
            continue
        ident = find(r.identity) if find else r.identity
        h = out.setdefault(ident, _Held())
        if r.rating is not None:
            h.rating = r.rating
        if r.status:
            h.status = r.status
        if r.review:
            h.review = r.review.strip()
        if r.timestamp > 0 and r.data_type == "history":
            h.events.append(r.timestamp)
        for k, v in r.ids.items():
            h.ids.setdefault(k, v)
    return out


def _has_event(held: List[int], ev: int, tol: int) -> bool:
    return any(abs(ev - e) < max(1, tol) for e in held)


def redirect_ref(ref: str, find: Callable[[int], int] | None) -> str:
    """A pending ref re-keyed onto the current root of an identity merged since it was recorded."""
    head, _, tail = ref.partition(":")
    if find is None or head != "id" or not tail.isdigit():
        return ref
    return f"id:{find(int(tail))}"


def _is_pending(item: ResolvedItem, pending: Set[str]) -> bool:
    if not pending:
        return False
    if item.ref in pending:
        return True
    return any(k in pending for k in keys_for_ids(item.ids))


def _considered(item: ResolvedItem, watermark: int, opts: PlanOptions) -> bool:
    if opts.force_full_sync:
        return True
    if item.timestamp > int(watermark or 0):
        return True
    return _is_pending(item, opts.pending)


# Planner
def plan(
    dataset: ResolvedDataset,
    target: Any,
    data_type: str,
    target_snapshot: Mapping[str, Iterable[RawRecord]],
    watermark: int,
    options: PlanOptions | None = None,
    *,
    find: Callable[[int], int] | None = None,
) -> Plan:
    """Least set of operations that converges `target` for one data type.

    `target` is a ServiceCapabilities. Items at or below the watermark are
    skipped unless force_full_sync is set or the item is pending a retry.
    Items the target cannot represent are listed in plan.excluded.
    """
    opts = options or PlanOptions()
    if opts.pending:
        opts = replace(opts, pending={redirect_ref(r, find) for r in opts.pending})
    tol = int(opts.tolerance_seconds)
    caps = target
    name = caps.name
    ops: List[Operation] = []
    excluded: Dict[Tuple[int, str], ExcludedItem] = {}
    held: Dict[str, Dict[int, _Held]] = {}

    def held_in(collection: str) -> Dict[int, _Held]:
        if collection not in held:
            held[collection] = index_snapshot(target_snapshot.get(collection) or (), find)
        return held[collection]

    def exclude(item: ResolvedItem, reason: str) -> None:
        why = UnrepresentableTarget(reason, detail=item.ref)
        _log.debug(f"{name}/{data_type}: excluded {why.detail}: {why}")
        excluded[(item.identity, why.reason)] = ExcludedItem(
            identity=item.identity,
            target=name,
            data_type=data_type,
            reason=why.reason,
            timestamp=item.timestamp,
            title=item.title,
            ids=tuple(sorted(item.ids.items())),
        )

    def op(kind: str, collection: str, item: ResolvedItem, ids: Dict[str, str], *,
           value: Any = None, watched_at: Optional[int] = None, h: Optional[_Held] = None) -> Operation:
        native = caps.native_id(h.ids) if h is not None else None
        own_event = watched_at is not None and collection == "history" and data_type == "history"
        return Operation(
            kind=kind,
            target=name,
            data_type=data_type,
            collection=collection,
            identity=item.identity,
            ids=tuple((ns, ids[ns]) for ns in caps.id_namespaces if ns in ids),
            value=value,
            native_id=native or caps.native_id(item.ids),
            watched_at=watched_at,
            timestamp=int(watched_at if own_event else item.timestamp),
            ref=item.ref,
            media_type=item.media_type,
            title=item.title,
        )

    if not caps.supports(data_type):
        for item in dataset.of(data_type).values():
            if _considered(item, watermark, opts):
                exclude(item, f"data type {data_type} not supported")
        return _finish(name, data_type, ops, excluded)

    history_ids = set(dataset.items.get("history") or {}) if opts.history_planned else set()

    for ident, item in sorted(dataset.of(data_type).items()):
        if not _considered(item, watermark, opts):
            continue
        if item.unresolved and (caps.requires_anchor or name not in item.provenance.sources):
            # a provisional identity cannot be matched against another service's holdings
            exclude(item, "identity unresolved")
            continue
        ids = caps.addressable_ids(item.ids)
        if not ids:
            exclude(item, "no addressable id")
            continue

        collections = caps.collections_for(data_type, item.status)
        if not collections:
            exclude(item, f"status {item.status or 'watchlist'} has no mapping")
            continue

        for collection in collections:
            if not caps.accepts_media(collection, item.media_type):
                exclude(item, f"media type {item.media_type} not supported in {collection}")
                continue
            h = held_in(collection).get(ident)

            if collection == "history":
                if data_type == "history":
                    have = dedupe_events(h.events, tol) if h else []
                    for ev in item.events:
                        if not _has_event(have, ev, tol):
                            ops.append(op("add", collection, item, ids, watched_at=ev, h=h))
                else:
                    # watched status from a watchlist; the history plan owns titles it already covers
                    if ident in history_ids or (h is not None and h.events):
                        continue
                    ops.append(op("add", collection, item, ids, watched_at=item.timestamp or None, h=h))
                continue

            value = caps.native_value(
                data_type, collection,
                rating=item.rating, status=item.status, review=item.review, spoiler=item.spoiler,
            )
            if h is None:
                ops.append(op("add", collection, item, ids, value=value))
                continue
            if _differs(caps, collection, item, h):
                kind = "update" if caps.supports_update else "add"
                ops.append(op(kind, collection, item, ids, value=value, h=h))

    # removals for identities the post-rules pruned
    for ident in sorted(dataset.pruned_of(data_type)):
        for collection in _removal_collections(caps, data_type):
            h = held_in(collection).get(ident)
            if h is None:
                continue
            if collection == "watchlist" and h.status not in (None, "watchlist"):
                # a status list (completed, dropped) is not a watchlist entry
                continue
            ghost = ResolvedItem(
                identity=ident, data_type=data_type, ids=dict(h.ids), timestamp=0,
                provenance=Provenance(sources=(), winner="", strategy="rule"),
            )
            if not caps.supports_remove:
                exclude(ghost, f"remove not supported in {collection}")
                continue
            rids = caps.addressable_ids(h.ids)
            if not rids:
                exclude(ghost, "no addressable id")
                continue
            ops.append(op("remove", collection, ghost, rids, h=h))

    return _finish(name, data_type, ops, excluded)


def _differs(caps: Any, collection: str, item: ResolvedItem, h: _Held) -> bool:
    if collection == "ratings":
        if h.rating is None:
            return True
        try:
            theirs = clamp_rating(float(h.rating))
        except (TypeError, ValueError):
            return True
        return caps.to_native_rating(item.rating) != caps.to_native_rating(theirs)
    if collection == "watchlist":
        if not caps.native_status:
            return False
        return caps.to_native_status(item.status or "watchlist") != caps.to_native_status(h.status or "watchlist")
    if collection == "reviews":
        return (item.review or "") != (h.review or "")
    return False


def _removal_collections(caps: Any, data_type: str) -> Tuple[str, ...]:
    if data_type == "watchlist":
        return ("watchlist",) if "watchlist" in {c for cols in caps.status_map.values() for c in cols} else ()
    return (data_type,) if caps.supports(data_type) else ()


def _finish(name: str, data_type: str, ops: List[Operation],
            excluded: Mapping[Tuple[int, str], ExcludedItem]) -> Plan:
    seen: Set[str] = set()
    uniq: List[Operation] = []
    for o in sorted(ops, key=lambda o: o.sort_key()):
        if o.key in seen:
            continue
        seen.add(o.key)
        uniq.append(o)
    return Plan(
        target=name,
        data_type=data_type,
        operations=uniq,
        excluded=[excluded[k] for k in sorted(excluded)],
    )


__all__ = ["PlanOptions", "plan", "index_snapshot", "redirect_ref"]
