# ws_platform/orchestrator/_types.py
# types and protocols for orchestrator.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from ..models import ExternalId, Operation, RawRecord


class SourceAdapter(Protocol):
    """Per-service fetch side; network, auth and paging live behind it."""

    def fetch(self, data_type: str) -> Iterable[RawRecord | Mapping[str, Any]]: ...


class ApplySink(Protocol):
    """Per-service write side (or an audit recorder in dry-run)."""

    def apply(
        self,
        target: str,
        data_type: str,
        operations: Sequence[Operation],
        dry_run: bool = False,
    ) -> Mapping[str, Any]: ...


class IdLookup(Protocol):
    def lookup(self, ext: ExternalId) -> ExternalId | None: ...


class CapabilityOps(Protocol):
    def name(self) -> str: ...
    def label(self) -> str: ...
    def features(self) -> Mapping[str, bool]: ...
    def capabilities(self) -> Any: ...


@dataclass
class RuleContext:
    now: int
    options: Any
    tolerance_seconds: int = 3600
    notes: list[str] = field(default_factory=list)
