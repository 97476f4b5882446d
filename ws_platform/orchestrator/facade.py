# ws_platform/orchestrator/facade.py
# orchestrator facade: one Collect -> Resolve -> Distribute pass.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from collections.abc import Callable, Mapping
from typing import Any

from .. import config_base
from ..identity import IdentityMapping, IdentityResolver, LookupFn
from ..models import ResolvedDataset
from ..policy import WatchSyncConfig, validate_config
from ._applier import advance_watermark, apply_plan
from ._collect import Collected, collect
from ._logging import Emitter
from ._planner import PlanOptions, plan as _plan
from ._providers import capabilities_for, load_sync_providers
from ._resolve import reconcile_all
from ._rules import apply_rules
from ._state_store import StateStore
from ._types import ApplySink, CapabilityOps, RuleContext, SourceAdapter
from ._unresolved import PendingLedger

__all__ = ["Orchestrator"]


def _as_lookup(obj: Any) -> LookupFn | None:
    if obj is None:
        return None
    fn = getattr(obj, "lookup", None)
    return fn if callable(fn) else obj


@dataclass
class Orchestrator:
    adapters: Mapping[str, SourceAdapter]
    sink: ApplySink
    config: Mapping[str, Any] | None = None
    lookup: Any = None
    on_progress: Callable[[str], None] | None = None
    state_path: Path | None = None
    providers: Mapping[str, CapabilityOps] | None = None

    # internal fields (set in __post_init__)
    emitter: Emitter = field(init=False)
    state_store: StateStore = field(init=False)
    _abort: threading.Event = field(init=False, default_factory=threading.Event)

    def __post_init__(self) -> None:
        # no config given: config.json under CONFIG_BASE, merged over the defaults
        self.cfg: dict[str, Any] = dict(self.config if self.config is not None else config_base.load_config())

        self.emitter = Emitter(self.on_progress)
        self.emit = self.emitter.emit

        self.state_store = StateStore(Path(self.state_path) if self.state_path else config_base.STATE_DIR())
        if self.providers is None:
            self.providers = load_sync_providers()

    # Abort
    def request_abort(self) -> None:
        """Stop at the next stage boundary; the running stage completes."""
        self._abort.set()

    def _aborted(self, stage: str, summary: dict[str, Any]) -> bool:
        if not self._abort.is_set():
            return False
        summary["aborted"] = stage
        self.emit("run:aborted", after=stage)
        return True

    def _lookup_fn(self, cfg: WatchSyncConfig) -> LookupFn | None:
        if self.lookup is not None:
            return _as_lookup(self.lookup)
        if cfg.tmdb.api_key:
            from providers.metadata._meta_TMDB import TmdbLookup
            return TmdbLookup(cfg.tmdb.api_key).lookup
        return None

    # Main run
    def run(
        self,
        *,
        dry_run: bool | None = None,
        dry_run_targets: list[str] | None = None,
        force_full_sync: bool | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        cfg = validate_config(self.cfg)
        opts = cfg.sync
        dry = opts.dry_run if dry_run is None else bool(dry_run)
        dry_targets = set(opts.dry_run_targets if dry_run_targets is None else (str(t).lower() for t in dry_run_targets))
        full = opts.force_full_sync if force_full_sync is None else bool(force_full_sync)
        ts_now = int(now if now is not None else time.time())
        policy = cfg.policy()
        data_types = opts.enabled_types()
        self._abort.clear()

        summary: dict[str, Any] = {
            "ok": True, "dry_run": dry, "dry_run_targets": sorted(dry_targets),
            "force_full_sync": full, "aborted": None,
            "started_at": ts_now, "data_types": data_types,
        }
        self.emit("run:start", dry_run=dry, dry_run_targets=sorted(dry_targets),
                  force_full_sync=full, data_types=data_types)

        store = self.state_store
        mapping = store.load_identity()
        watermarks = store.load_watermarks()
        ledger = PendingLedger(store.load_pending())

        # Collect
        sources = {s: a for s, a in sorted(self.adapters.items()) if s in cfg.enabled_services()}
        collected = collect(sources, data_types, workers=cfg.runtime.collect_workers)
        for s in cfg.enabled_services():
            if s not in sources:
                collected.missing.add(s)
        summary["collected"] = collected.counts
        summary["missing"] = sorted(collected.missing)
        self.emit("collect:done", counts=collected.counts, missing=summary["missing"], errors=collected.errors)
        if self._aborted("collect", summary):
            return summary

        # Resolve
        dataset = self._resolve(collected, mapping, cfg, policy, ts_now, summary)
        moved = ledger.redirect(mapping.find)
        if moved:
            self.emit("pending:redirect", moved=moved)
        if not dry:
            store.save_identity(mapping)
        if self._aborted("resolve", summary):
            return summary

        # Distribute
        caps = capabilities_for(cfg.services, self.providers or {})
        plans: dict[str, dict[str, Any]] = {}
        for target, tcaps in sorted(caps.items()):
            if target in collected.missing:
                self.emit("plan:skipped", dst=target, reason="target snapshot unavailable")
                continue
            snapshot = {t: collected.by_source(target, t) for t in collected.records}
            tdry = dry or target in dry_targets
            for dt in data_types:
                if not tcaps.supports(dt):
                    continue
                plans.setdefault(target, {})[dt] = self._distribute(
                    target, tcaps, dt, dataset, snapshot, mapping, watermarks, ledger,
                    policy.tolerance_seconds, full, tdry, cfg, ts_now,
                )
                if not plans[target][dt]["ok"]:
                    summary["ok"] = False
        summary["plans"] = plans

        if not dry:
            store.save_watermarks(watermarks)
            store.save_pending(ledger.to_dict())
        summary["finished_at"] = int(time.time())
        self.emit("run:done", ok=summary["ok"], dry_run=dry, plans={
            t: {d: p["operations"] for d, p in per.items()} for t, per in plans.items()
        })
        return summary

    # Stages
    def _resolve(self, collected: Collected, mapping: IdentityMapping, cfg: WatchSyncConfig,
                 policy: Any, ts_now: int, summary: dict[str, Any]) -> ResolvedDataset:
        resolver = IdentityResolver(mapping, self._lookup_fn(cfg))
        for recs in collected.records.values():
            resolver.resolve_all(recs)
        self.emit("identity:done", **resolver.stats)

        dataset = reconcile_all(
            collected.records, policy,
            missing_sources=collected.missing, find=mapping.find,
        )
        ctx = RuleContext(now=ts_now, options=cfg.sync, tolerance_seconds=policy.tolerance_seconds)
        dataset = apply_rules(dataset, ctx)

        summary["identity"] = dict(resolver.stats)
        summary["conflicts"] = [str(c) for c in resolver.conflicts]
        summary["resolved"] = dataset.counts()
        summary["pruned"] = {t: sorted(v) for t, v in dataset.pruned.items() if v}
        summary["rules"] = list(ctx.notes)
        self.emit("resolve:done", counts=summary["resolved"], rules=ctx.notes, pruned=summary["pruned"])
        return dataset

    def _distribute(self, target: str, tcaps: Any, dt: str, dataset: ResolvedDataset,
                    snapshot: Mapping[str, Any], mapping: IdentityMapping,
                    watermarks: dict[str, dict[str, int]], ledger: PendingLedger,
                    tolerance: int, full: bool, dry: bool, cfg: WatchSyncConfig,
                    ts_now: int) -> dict[str, Any]:
        store = self.state_store
        wm = int((watermarks.get(target) or {}).get(dt, 0))
        p = _plan(
            dataset, tcaps, dt, snapshot, wm,
            PlanOptions(
                force_full_sync=full,
                tolerance_seconds=tolerance,
                pending=ledger.refs(target, dt),
                history_planned=cfg.sync.history,
            ),
            find=mapping.find,
        )
        self.emit("plan", dst=target, feature=dt, operations=len(p.operations),
                  excluded=len(p.excluded), watermark=wm)
        if p.excluded:
            store.save_excluded(target, dt, p.excluded, now=ts_now)
        store.save_last_plan(p, dry_run=dry, now=ts_now)

        rt = cfg.runtime
        res = apply_plan(
            self.sink, p, dry_run=dry, emit=self.emit,
            chunk_size=rt.apply_chunk_size, chunk_pause_ms=rt.apply_chunk_pause_ms, retries=rt.apply_retries,
        )
        out = {
            "operations": len(p.operations),
            "excluded": len(p.excluded),
            "confirmed": res["confirmed"],
            "errors": res["errors"],
            "ok": bool(res["ok"]) and res["errors"] == 0,
            "watermark": wm,
            "dry_run": dry,
        }
        if dry:
            return out

        new_wm = advance_watermark(wm, p, res["confirmed_keys"])
        if new_wm != wm:
            watermarks.setdefault(target, {})[dt] = new_wm
            self.emit("watermark:advance", dst=target, feature=dt, old=wm, new=new_wm)
        out["watermark"] = new_wm
        out["pending"] = ledger.settle(target, dt, p, res["confirmed_keys"], hint="apply:unconfirmed", now=ts_now)["pending"]
        return out
