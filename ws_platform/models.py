# ws_platform/models.py
# Record, resolved item, operation and plan types for the resolve/distribute pipeline.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, NamedTuple

from .id_map import ids_from, id_key, keys_for_ids

DATA_TYPES: tuple[str, ...] = ("watchlist", "ratings", "reviews", "history")
STATUSES: tuple[str, ...] = ("watchlist", "watching", "completed", "dropped", "hold")
KINDS: tuple[str, ...] = ("add", "update", "remove")
COLLECTIONS: tuple[str, ...] = ("watchlist", "ratings", "reviews", "history")

FLAG_UNRESOLVED = "identity-unresolved"

RATING_MIN = 1
RATING_MAX = 10

_STATUS_ALIASES: dict[str, str] = {
    "watchlist": "watchlist",
    "plantowatch": "watchlist",
    "plan_to_watch": "watchlist",
    "plan-to-watch": "watchlist",
    "planned": "watchlist",
    "watching": "watching",
    "in_progress": "watching",
    "completed": "completed",
    "watched": "completed",
    "finished": "completed",
    "dropped": "dropped",
    "hold": "hold",
    "on_hold": "hold",
    "paused": "hold",
}


class ExternalId(NamedTuple):
    namespace: str
    value: str

    @property
    def key(self) -> str:
        return id_key(self.namespace, self.value)


# Time helpers

def iso_to_ts(s: Any) -> int:
    if s is None or s == "":
        return 0
    if isinstance(s, (int, float)):
        return int(s)
    txt = str(s).strip()
    if txt.isdigit():
        return int(txt)
    try:
        d = dt.datetime.fromisoformat(txt.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return int(d.timestamp())


def normalize_status(v: Any) -> str | None:
    if v is None:
        return None
    return _STATUS_ALIASES.get(str(v).strip().lower().replace(" ", "_"))


def normalize_media_type(v: Any) -> str:
    x = str(v or "").strip().lower()
    if x in ("movies", "movie", "film"):
        return "movie"
    if x in ("shows", "show", "series", "tv", "anime"):
        return "show"
    if x in ("episodes", "episode"):
        return "episode"
    return "movie"


def item_ref(identity: int, ids: Mapping[str, Any]) -> str:
    """Cross-run reference: the identity when persisted, else the first id key."""
    if identity > 0:
        return f"id:{identity}"
    keys = keys_for_ids(ids)
    return keys[0] if keys else f"id:{identity}"


def _as_float(v: Any) -> float | None:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class RawRecord:
    source: str
    data_type: str
    ids: dict[str, str] = field(default_factory=dict)
    timestamp: int = 0
    rating: float | None = None
    status: str | None = None
    review: str | None = None
    spoiler: bool = False
    title: str | None = None
    year: int | None = None
    media_type: str = "movie"
    identity: int | None = None
    flags: set[str] = field(default_factory=set)

    @classmethod
    def from_mapping(cls, source: str, data_type: str, m: Mapping[str, Any]) -> "RawRecord":
        """Build a record from an adapter row; accepts ISO or epoch timestamps."""
        ts = m.get("timestamp")
        if ts is None:
            ts = m.get("watched_at") or m.get("rated_at") or m.get("listed_at") or m.get("created_at")
        year = m.get("year")
        try:
            year_i = int(year) if year not in (None, "") else None
        except (TypeError, ValueError):
            year_i = None
        return cls(
            source=str(source).lower(),
            data_type=data_type,
            ids=ids_from(m),
            timestamp=iso_to_ts(ts),
            rating=_as_float(m.get("rating")),
            status=normalize_status(m.get("status")),
            review=(str(m["review"]) if m.get("review") is not None else None),
            spoiler=bool(m.get("spoiler")),
            title=m.get("title"),
            year=year_i,
            media_type=normalize_media_type(m.get("media_type") or m.get("type")),
            flags=set(m.get("flags") or ()),
        )

    @property
    def unresolved(self) -> bool:
        return FLAG_UNRESOLVED in self.flags


@dataclass(frozen=True)
class Provenance:
    sources: tuple[str, ...]
    winner: str
    strategy: str
    missing: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources": list(self.sources),
            "winner": self.winner,
            "strategy": self.strategy,
            "missing": list(self.missing),
        }


@dataclass
class ResolvedItem:
    identity: int
    data_type: str
    ids: dict[str, str]
    timestamp: int
    provenance: Provenance
    rating: int | None = None
    status: str | None = None
    review: str | None = None
    spoiler: bool = False
    events: list[int] = field(default_factory=list)
    title: str | None = None
    year: int | None = None
    media_type: str = "movie"
    flags: set[str] = field(default_factory=set)

    @property
    def ref(self) -> str:
        return item_ref(self.identity, self.ids)

    @property
    def unresolved(self) -> bool:
        return FLAG_UNRESOLVED in self.flags

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "identity": self.identity,
            "data_type": self.data_type,
            "ids": dict(sorted(self.ids.items())),
            "timestamp": self.timestamp,
            "media_type": self.media_type,
            "provenance": self.provenance.to_dict(),
        }
        if self.rating is not None:
            out["rating"] = self.rating
        if self.status is not None:
            out["status"] = self.status
        if self.review is not None:
            out["review"] = self.review
            out["spoiler"] = self.spoiler
        if self.events:
            out["events"] = list(self.events)
        if self.title:
            out["title"] = self.title
        if self.year:
            out["year"] = self.year
        if self.flags:
            out["flags"] = sorted(self.flags)
        return out


@dataclass
class ResolvedDataset:
    items: dict[str, dict[int, ResolvedItem]] = field(default_factory=dict)
    pruned: dict[str, set[int]] = field(default_factory=dict)
    missing: tuple[str, ...] = ()

    def of(self, data_type: str) -> dict[int, ResolvedItem]:
        return self.items.setdefault(data_type, {})

    def prune(self, data_type: str, identity: int) -> None:
        if self.of(data_type).pop(identity, None) is not None:
            self.pruned.setdefault(data_type, set()).add(identity)

    def pruned_of(self, data_type: str) -> set[int]:
        return set(self.pruned.get(data_type) or ())

    def counts(self) -> dict[str, int]:
        return {dt_: len(v) for dt_, v in sorted(self.items.items())}


@dataclass(frozen=True)
class Operation:
    kind: str
    target: str
    data_type: str
    collection: str
    identity: int
    ids: tuple[tuple[str, str], ...]
    value: Any = None
    native_id: str | None = None
    watched_at: int | None = None
    timestamp: int = 0
    ref: str = ""
    media_type: str = "movie"
    title: str | None = None

    @property
    def key(self) -> str:
        tail = f"@{self.watched_at}" if self.watched_at is not None else ""
        return f"{self.target}:{self.collection}:{self.kind}:{self.ref or self.identity}{tail}"

    @property
    def ids_dict(self) -> dict[str, str]:
        return dict(self.ids)

    def sort_key(self) -> tuple[Any, ...]:
        return (self.identity, KINDS.index(self.kind), self.collection, self.watched_at or 0)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "kind": self.kind,
            "target": self.target,
            "data_type": self.data_type,
            "collection": self.collection,
            "identity": self.identity,
            "ids": dict(self.ids),
            "media_type": self.media_type,
            "timestamp": self.timestamp,
        }
        if self.value is not None:
            out["value"] = self.value
        if self.native_id is not None:
            out["native_id"] = self.native_id
        if self.watched_at is not None:
            out["watched_at"] = self.watched_at
        if self.title:
            out["title"] = self.title
        return out


@dataclass(frozen=True)
class ExcludedItem:
    identity: int
    target: str
    data_type: str
    reason: str
    timestamp: int = 0
    title: str | None = None
    ids: tuple[tuple[str, str], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "target": self.target,
            "data_type": self.data_type,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "title": self.title,
            "ids": dict(self.ids),
        }


@dataclass
class Plan:
    target: str
    data_type: str
    operations: list[Operation] = field(default_factory=list)
    excluded: list[ExcludedItem] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def keys(self) -> list[str]:
        return [op.key for op in self.operations]

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "data_type": self.data_type,
            "operations": [op.to_dict() for op in self.operations],
            "excluded": [x.to_dict() for x in self.excluded],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


__all__ = [
    "DATA_TYPES", "STATUSES", "KINDS", "COLLECTIONS",
    "FLAG_UNRESOLVED", "RATING_MIN", "RATING_MAX",
    "ExternalId", "RawRecord", "Provenance", "ResolvedItem", "ResolvedDataset",
    "Operation", "ExcludedItem", "Plan",
    "iso_to_ts", "normalize_status", "normalize_media_type", "item_ref",
]
