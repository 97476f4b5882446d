# /providers/sync/_mod_base.py
# WatchSync base capability module
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping

from ws_platform.id_map import normalize_id
from ws_platform.models import RATING_MAX, RATING_MIN


def _frozen(m: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(m or {}))


def identity_rating(r: int) -> int:
    return int(r)


# Capabilities

@dataclass(frozen=True)
class ServiceCapabilities:
    """What a service can receive; the planner never branches on service names.

    status_map     normalized status -> target collections it lands in
    native_status  normalized status -> native label written with watchlist ops
    id_namespaces  ids the service can address, best first
    """
    name: str
    label: str
    data_types: frozenset[str]
    media_types: Mapping[str, frozenset[str]]
    id_namespaces: tuple[str, ...]
    status_map: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: _frozen({}))
    native_status: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    requires_anchor: bool = False
    supports_update: bool = True
    supports_remove: bool = True
    rating_fn: Callable[[int], Any] = identity_rating

    # --- data types / collections -------------------------------------------

    def supports(self, data_type: str) -> bool:
        return data_type in self.data_types

    def accepts_media(self, collection: str, media_type: str) -> bool:
        allowed = self.media_types.get(collection)
        if allowed is None:
            return False
        return media_type in allowed

    def collections_for(self, data_type: str, status: str | None = None) -> tuple[str, ...]:
        """Target collections a resolved item of this data type is written to."""
        if data_type != "watchlist":
            return (data_type,) if self.supports(data_type) else ()
        if status is None:
            status = "watchlist"
        return tuple(self.status_map.get(status) or ())

    # --- values ---------------------------------------------------------------

    def to_native_rating(self, rating: int) -> Any:
        r = max(RATING_MIN, min(RATING_MAX, int(rating)))
        return self.rating_fn(r)

    def to_native_status(self, status: str | None) -> str | None:
        if status is None:
            return None
        return self.native_status.get(status, status)

    def native_value(self, data_type: str, collection: str, *, rating: int | None = None,
                     status: str | None = None, review: str | None = None, spoiler: bool = False) -> Any:
        if collection == "ratings":
            return self.to_native_rating(rating) if rating is not None else None
        if collection == "watchlist":
            return self.to_native_status(status or "watchlist") if self.native_status else None
        if collection == "reviews":
            return {"content": review, "spoiler": bool(spoiler)} if review else None
        return None

    # --- ids ------------------------------------------------------------------

    def addressable_ids(self, ids: Mapping[str, Any]) -> dict[str, str]:
        out: dict[str, str] = {}
        for ns in self.id_namespaces:
            v = normalize_id(ns, ids.get(ns))
            if v:
                out[ns] = v
        return out

    def native_id(self, ids: Mapping[str, Any]) -> str | None:
        v = ids.get(self.name)
        return str(v) if v else None

    # --- overrides ------------------------------------------------------------

    def with_status_map(self, overrides: Mapping[str, Any] | None) -> "ServiceCapabilities":
        if not overrides:
            return self
        merged = dict(self.status_map)
        for status, cols in overrides.items():
            if isinstance(cols, str):
                cols = [cols]
            merged[str(status)] = tuple(str(c) for c in (cols or ()))
        return replace(self, status_map=_frozen(merged))


def make_caps(**kw: Any) -> ServiceCapabilities:
    """ServiceCapabilities with plain dict/list arguments frozen."""
    kw["data_types"] = frozenset(kw.get("data_types") or ())
    kw["media_types"] = _frozen({k: frozenset(v) for k, v in (kw.get("media_types") or {}).items()})
    kw["id_namespaces"] = tuple(kw.get("id_namespaces") or ())
    kw["status_map"] = _frozen({k: tuple(v) for k, v in (kw.get("status_map") or {}).items()})
    kw["native_status"] = _frozen(kw.get("native_status") or {})
    return ServiceCapabilities(**kw)


class BaseOps:
    """OPS surface discovered by the orchestrator's provider loader."""

    CAPS: ServiceCapabilities

    def name(self) -> str:
        return self.CAPS.name.upper()

    def label(self) -> str:
        return self.CAPS.label

    def features(self) -> Mapping[str, bool]:
        return {t: self.CAPS.supports(t) for t in ("watchlist", "ratings", "reviews", "history")}

    def capabilities(self) -> ServiceCapabilities:
        return self.CAPS
