# ws_platform/orchestrator/_state_store.py
# state store management for orchestrator.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from collections.abc import Iterable, Mapping
from typing import Any

from ..config_base import _write_json_atomic
from ..errors import PersistentStateCorruption
from ..identity import IdentityMapping, IdentityStore
from ..models import ExcludedItem, Plan


def _slug(s: str) -> str:
    return str(s).strip().lower()


@dataclass
class StateStore:
    base_path: Path

    @property
    def identity_map(self) -> Path:
        return self.base_path / "identity_map.json"

    @property
    def watermarks(self) -> Path:
        return self.base_path / "watermarks.json"

    @property
    def pending(self) -> Path:
        return self.base_path / "pending.json"

    def excluded(self, target: str, data_type: str) -> Path:
        return self.base_path / f"excluded.{_slug(target)}.{_slug(data_type)}.json"

    def last_plan(self, target: str, data_type: str) -> Path:
        return self.base_path / f"last_plan.{_slug(target)}.{_slug(data_type)}.json"

    # --- raw I/O -------------------------------------------------------------

    def _read(self, p: Path, default: Any) -> Any:
        """Missing file -> default; unreadable or malformed -> PersistentStateCorruption."""
        if not p.exists():
            return default
        try:
            data = json.loads(p.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise PersistentStateCorruption(p, str(e)) from e
        if not isinstance(data, dict):
            raise PersistentStateCorruption(p, "expected an object")
        return data

    def _read_audit(self, p: Path) -> dict[str, Any]:
        # audit files are informational; a damaged one is simply rewritten
        try:
            return self._read(p, {})
        except PersistentStateCorruption:
            return {}

    def _write_atomic(self, p: Path, data: Any) -> None:
        _write_json_atomic(p, data)

    # --- identity mapping ----------------------------------------------------

    def load_identity(self) -> IdentityMapping:
        return IdentityStore(self.identity_map).load()

    def save_identity(self, mapping: IdentityMapping) -> None:
        IdentityStore(self.identity_map).save(mapping)

    # --- watermarks ----------------------------------------------------------

    def load_watermarks(self) -> dict[str, dict[str, int]]:
        data = self._read(self.watermarks, {})
        out: dict[str, dict[str, int]] = {}
        for target, per_type in data.items():
            if not isinstance(per_type, dict):
                raise PersistentStateCorruption(self.watermarks, f"bad entry for {target!r}")
            try:
                out[str(target)] = {str(t): int(v) for t, v in per_type.items()}
            except (TypeError, ValueError) as e:
                raise PersistentStateCorruption(self.watermarks, f"bad value for {target!r}: {e}") from e
        return out

    def save_watermarks(self, data: Mapping[str, Mapping[str, int]]) -> None:
        self._write_atomic(self.watermarks, {t: dict(v) for t, v in data.items()})

    # --- pending retries -----------------------------------------------------

    def load_pending(self) -> dict[str, dict[str, dict[str, Any]]]:
        data = self._read(self.pending, {})
        for target, per_type in data.items():
            if not isinstance(per_type, dict) or not all(isinstance(v, dict) for v in per_type.values()):
                raise PersistentStateCorruption(self.pending, f"bad entry for {target!r}")
        return data

    def save_pending(self, data: Mapping[str, Any]) -> None:
        self._write_atomic(self.pending, dict(data))

    # --- audit ---------------------------------------------------------------

    def save_excluded(self, target: str, data_type: str, items: Iterable[ExcludedItem], *, now: int) -> int:
        """Merge this run's exclusions into the audit file; returns how many are listed."""
        p = self.excluded(target, data_type)
        cur = self._read_audit(p)
        entries: dict[str, Any] = dict(cur.get("items") or {})
        for x in items:
            key = f"{x.identity}:{x.reason}"
            prev = entries.get(key) or {}
            node = x.to_dict()
            node["first_seen"] = int(prev.get("first_seen") or now)
            node["last_seen"] = now
            entries[key] = node
        self._write_atomic(p, {"target": target, "data_type": data_type, "updated_at": now, "items": entries})
        return len(entries)

    def save_last_plan(self, plan: Plan, *, dry_run: bool, now: int) -> None:
        node = plan.to_dict()
        node["dry_run"] = bool(dry_run)
        node["recorded_at"] = now
        self._write_atomic(self.last_plan(plan.target, plan.data_type), node)

    def load_last_plan(self, target: str, data_type: str) -> dict[str, Any]:
        return self._read_audit(self.last_plan(target, data_type))
