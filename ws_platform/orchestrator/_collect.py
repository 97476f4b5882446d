# ws_platform/orchestrator/_collect.py
# Parallel snapshot collection from every enabled source.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from _logging import log

from ..models import RawRecord
from ._types import SourceAdapter

_log = log.child("collect")


@dataclass
class Collected:
    records: dict[str, list[RawRecord]] = field(default_factory=dict)
    missing: set[str] = field(default_factory=set)
    errors: dict[str, str] = field(default_factory=dict)
    counts: dict[str, dict[str, int]] = field(default_factory=dict)

    def of(self, data_type: str) -> list[RawRecord]:
        return self.records.get(data_type) or []

    def by_source(self, source: str, data_type: str) -> list[RawRecord]:
        return [r for r in self.of(data_type) if r.source == source]


def _coerce(source: str, data_type: str, rows: Iterable[Any]) -> list[RawRecord]:
    out: list[RawRecord] = []
    for row in rows or ():
        if isinstance(row, RawRecord):
            row.source = source
            row.data_type = data_type
            out.append(row)
        elif isinstance(row, Mapping):
            out.append(RawRecord.from_mapping(source, data_type, row))
        else:
            _log.debug(f"{source}/{data_type}: skipping unsupported row {type(row).__name__}")
    return out


def _fetch_one(source: str, adapter: SourceAdapter, data_type: str) -> list[RawRecord]:
    t0 = time.time()
    rows = adapter.fetch(data_type)
    recs = _coerce(source, data_type, rows)
    _log.debug(f"{source}/{data_type}: {len(recs)} records in {int((time.time() - t0) * 1000)} ms")
    return recs


def collect(
    adapters: Mapping[str, SourceAdapter],
    data_types: Sequence[str],
    *,
    workers: int = 4,
) -> Collected:
    """Fetch every (source, data type) pair concurrently.

    A fetch that raises marks its source missing for the run; the other
    sources are still collected.
    """
    out = Collected(records={t: [] for t in data_types})
    jobs = [(s, t) for s in sorted(adapters) for t in data_types]
    if not jobs:
        return out

    results: dict[tuple[str, str], list[RawRecord]] = {}
    with ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="ws-collect") as pool:
        futs = {pool.submit(_fetch_one, s, adapters[s], t): (s, t) for s, t in jobs}
        for fut in as_completed(futs):
            s, t = futs[fut]
            try:
                results[(s, t)] = fut.result()
            except Exception as e:
                out.missing.add(s)
                out.errors[f"{s}/{t}"] = f"{type(e).__name__}: {e}"
                _log.error(f"fetch failed for {s}/{t}: {e}")

    # deterministic order regardless of completion order
    for s, t in jobs:
        if s in out.missing:
            continue
        recs = results.get((s, t)) or []
        out.records[t].extend(recs)
        out.counts.setdefault(s, {})[t] = len(recs)
    return out
