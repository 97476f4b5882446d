# ws_platform/identity.py
# Cross-service identity resolution: external ids -> one canonical identity per title.
# Copyright (c) 2026 WatchSync contributors
#
# The mapping is a union-find arena over integer identities:
#   index[key]         "imdb:tt0111161" -> identity
#   parent[identity]   loser -> survivor (absent for roots)
#   titles[key]        "movie|title:heat|year:1995" -> identity, consulted only when ids resolve nothing
# A merge keeps the lowest identity and re-points every key of the loser, so
# merges are transitive and their order does not change the outcome.
# Provisional identities (negative) belong to a single run and never enter the arena.
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from _logging import log

from .config_base import _write_json_atomic
from .errors import IdentityConflict, IdentityLookupFailure, PersistentStateCorruption
from .id_map import NAMESPACES, coalesce_ids, has_anchor, id_key, keys_for_ids, parse_key, title_key
from .models import FLAG_UNRESOLVED, ExternalId, RawRecord

_log = log.child("identity")

LookupFn = Callable[[ExternalId], Optional[ExternalId]]

# One critical section for every mapping mutation, shared across resolvers.
MAPPING_LOCK = threading.RLock()

STORE_VERSION = 1


@dataclass
class IdentityMapping:
    index: dict[str, int] = field(default_factory=dict)
    parent: dict[int, int] = field(default_factory=dict)
    next_id: int = 1
    titles: dict[str, int] = field(default_factory=dict)

    def find(self, identity: int) -> int:
        if identity <= 0:
            return identity
        with MAPPING_LOCK:
            root = identity
            while root in self.parent:
                root = self.parent[root]
            # path compression
            cur = identity
            while cur != root:
                nxt = self.parent[cur]
                self.parent[cur] = root
                cur = nxt
            return root

    def get(self, key: str) -> int | None:
        with MAPPING_LOCK:
            ident = self.index.get(key)
            return self.find(ident) if ident is not None else None

    def by_title(self, key: str | None) -> int | None:
        if not key:
            return None
        with MAPPING_LOCK:
            ident = self.titles.get(key)
            return self.find(ident) if ident is not None else None

    def remember_title(self, key: str | None, identity: int) -> None:
        if not key or identity <= 0:
            return
        with MAPPING_LOCK:
            self.titles.setdefault(key, self.find(identity))

    def namespaces_of(self, identity: int) -> dict[str, set[str]]:
        """Id values already mapped to identity's root, per namespace."""
        out: dict[str, set[str]] = {}
        with MAPPING_LOCK:
            root = self.find(identity)
            for k, v in self.index.items():
                if self.find(v) == root:
                    ns, val = parse_key(k)
                    out.setdefault(ns, set()).add(val)
        return out

    def allocate(self) -> int:
        with MAPPING_LOCK:
            ident = self.next_id
            self.next_id += 1
            return ident

    def assign(self, key: str, identity: int) -> None:
        if identity <= 0:
            raise ValueError("provisional identities cannot be mapped")
        with MAPPING_LOCK:
            cur = self.get(key)
            if cur is not None and cur != self.find(identity):
                self.union(cur, identity)
                return
            self.index[key] = self.find(identity)

    def union(self, a: int, b: int) -> int:
        with MAPPING_LOCK:
            ra, rb = self.find(a), self.find(b)
            if ra == rb:
                return ra
            survivor, loser = (ra, rb) if ra < rb else (rb, ra)
            self.parent[loser] = survivor
            for k, v in self.index.items():
                if v == loser or self.find(v) == survivor:
                    self.index[k] = survivor
            for k, v in self.titles.items():
                if v == loser or self.find(v) == survivor:
                    self.titles[k] = survivor
            return survivor

    def to_dict(self) -> dict[str, Any]:
        with MAPPING_LOCK:
            return {
                "version": STORE_VERSION,
                "next_id": self.next_id,
                "ids": dict(sorted(self.index.items())),
                "merged": {str(k): v for k, v in sorted(self.parent.items())},
                "titles": dict(sorted(self.titles.items())),
            }

    @classmethod
    def from_dict(cls, data: Any, *, source: Any = "identity_map.json") -> "IdentityMapping":
        if not isinstance(data, dict):
            raise PersistentStateCorruption(source, "expected an object")
        try:
            ids = {str(k): int(v) for k, v in (data.get("ids") or {}).items()}
            merged = {int(k): int(v) for k, v in (data.get("merged") or {}).items()}
            titles = {str(k): int(v) for k, v in (data.get("titles") or {}).items()}
            next_id = int(data.get("next_id") or 1)
        except (TypeError, ValueError, AttributeError) as e:
            raise PersistentStateCorruption(source, f"bad entry: {e}") from e
        top = max([0, *ids.values(), *titles.values(), *merged.keys(), *merged.values()])
        if any(v <= 0 for v in (*ids.values(), *titles.values())) or next_id <= top:
            raise PersistentStateCorruption(source, "identity counter is behind allocated identities")
        return cls(index=ids, parent=merged, next_id=next_id, titles=titles)


class IdentityStore:
    """JSON persistence for the identity mapping (atomic replace)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> IdentityMapping:
        if not self.path.exists():
            return IdentityMapping()
        try:
            data = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise PersistentStateCorruption(self.path, str(e)) from e
        return IdentityMapping.from_dict(data, source=self.path)

    def save(self, mapping: IdentityMapping) -> None:
        _write_json_atomic(self.path, mapping.to_dict())


class IdentityResolver:
    def __init__(self, mapping: IdentityMapping, lookup: LookupFn | None = None):
        self.mapping = mapping
        self.lookup = lookup
        self.conflicts: list[IdentityConflict] = []
        self.stats: dict[str, int] = {
            "resolved": 0, "allocated": 0, "merged": 0,
            "lookups": 0, "lookup_failures": 0, "unresolved": 0, "title_matches": 0,
        }
        self._cache: dict[str, ExternalId | None] = {}
        self._failed: dict[str, IdentityLookupFailure] = {}
        self._provisional = 0

    # --- public ----------------------------------------------------------------

    def resolve(self, record: RawRecord) -> int:
        with MAPPING_LOCK:
            ident = self._resolve_locked(record)
        record.identity = ident
        return ident

    def resolve_all(self, records: Iterable[RawRecord]) -> list[RawRecord]:
        out = list(records)
        for r in out:
            self.resolve(r)
        return out

    def identity_of(self, record: RawRecord) -> int:
        """Current root of a resolved record (follows merges made after it was resolved)."""
        if record.identity is None:
            return self.resolve(record)
        return self.mapping.find(record.identity)

    # --- internals -------------------------------------------------------------

    def _provisional_id(self, record: RawRecord) -> int:
        self._provisional -= 1
        record.flags.add(FLAG_UNRESOLVED)
        self.stats["unresolved"] += 1
        return self._provisional

    def _mapped(self, keys: list[str]) -> list[int]:
        return sorted({i for i in (self.mapping.get(k) for k in keys) if i is not None})

    def _by_title(self, record: RawRecord, tkey: str | None, keys: list[str]) -> int | None:
        ident = self.mapping.by_title(tkey)
        if ident is None:
            return None
        held = self.mapping.namespaces_of(ident)
        for ns, val in (parse_key(k) for k in keys):
            if held.get(ns) and val not in held[ns]:
                # same title and year but a conflicting id: a different title
                _log.debug(f"title match {tkey} rejected: {ns}:{val} vs {sorted(held[ns])}")
                return None
        self.stats["title_matches"] += 1
        _log.debug(f"{record.source} record {record.title!r} matched identity {ident} by title/year")
        return ident

    def _resolve_locked(self, record: RawRecord) -> int:
        tkey = title_key(record.title, record.year, record.media_type)
        keys = keys_for_ids(record.ids)
        if not keys:
            ident = self._by_title(record, tkey, keys)
            if ident is not None:
                self.stats["resolved"] += 1
                return ident
            _log.debug(f"no usable ids on {record.source}/{record.data_type} record {record.title!r}")
            return self._provisional_id(record)

        found = self._mapped(keys)
        if not found:
            hit = self._by_title(record, tkey, keys)
            if hit is not None:
                found = [hit]
        if not found:
            try:
                extra = self._lookup_ids(record.ids)
            except IdentityLookupFailure as e:
                self.stats["lookup_failures"] += 1
                _log.warn(f"{e}; {record.source} record stays unresolved this run")
                return self._provisional_id(record)
            if extra:
                record.ids = coalesce_ids(record.ids, extra)
                keys = keys_for_ids(record.ids)
                found = self._mapped(keys)

        if not found:
            ident = self.mapping.allocate()
            self.stats["allocated"] += 1
        elif len(found) == 1:
            ident = found[0]
        else:
            ident = self._merge(found, keys)

        for k in keys:
            self.mapping.assign(k, ident)
        ident = self.mapping.find(ident)
        self.mapping.remember_title(tkey, ident)
        self.stats["resolved"] += 1
        return ident

    def _merge(self, identities: list[int], evidence: list[str]) -> int:
        survivor = identities[0]
        for other in identities[1:]:
            survivor = self.mapping.union(survivor, other)
        conflict = IdentityConflict(survivor, identities[1:], evidence)
        self.conflicts.append(conflict)
        self.stats["merged"] += len(identities) - 1
        _log.info(f"identity conflict: {conflict}")
        return survivor

    def _lookup_ids(self, ids: dict[str, str]) -> dict[str, str]:
        if self.lookup is None or has_anchor(ids):
            return {}
        found: dict[str, str] = {}
        for ns in NAMESPACES:
            val = ids.get(ns)
            if not val:
                continue
            key = id_key(ns, val)
            if key in self._failed:
                raise self._failed[key]
            if key not in self._cache:
                self.stats["lookups"] += 1
                try:
                    hit = self.lookup(ExternalId(ns, val))
                except IdentityLookupFailure as e:
                    self._failed[key] = e
                    raise
                self._cache[key] = hit
                _log.debug(f"lookup {key} -> {hit.key if hit else 'none'}")
            hit = self._cache[key]
            if hit is not None and hit.namespace not in ids and hit.namespace not in found:
                found[hit.namespace] = hit.value
            if has_anchor(found):
                break
        return coalesce_ids(found)


__all__ = [
    "MAPPING_LOCK", "LookupFn",
    "IdentityMapping", "IdentityStore", "IdentityResolver",
]
