# ws_platform/errors.py
# Error kinds shared by the resolve/distribute pipeline.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

from typing import Any, Optional, Sequence


class SyncError(RuntimeError):
    """Base for every error raised by the sync core."""


class IdentityLookupFailure(SyncError):
    """An external id lookup failed; the record stays unresolved for this run."""

    def __init__(self, namespace: str, value: str, reason: str = "") -> None:
        self.namespace = namespace
        self.value = value
        self.reason = reason
        super().__init__(f"lookup failed for {namespace}:{value}" + (f" ({reason})" if reason else ""))


class IdentityConflict(SyncError):
    """Two canonical identities were found to share evidence and were merged.

    Informational: built and logged by the resolver, never raised out of it.
    """

    def __init__(self, survivor: int, merged: Sequence[int], evidence: Sequence[str] = ()) -> None:
        self.survivor = int(survivor)
        self.merged = sorted(int(x) for x in merged)
        self.evidence = list(evidence)
        super().__init__(f"merged {self.merged} into {self.survivor} via {', '.join(self.evidence) or '-'}")


class UnrepresentableTarget(SyncError):
    """A resolved item cannot be expressed on a target; carried as an exclusion reason."""

    def __init__(self, reason: str, detail: Optional[Any] = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(reason)


class ConfigurationError(SyncError):
    """Invalid configuration; raised before any stage runs."""


class PersistentStateCorruption(SyncError):
    """A state file is unreadable or malformed; state must be reset."""

    def __init__(self, path: Any, reason: str = "") -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"corrupt state file {self.path}" + (f": {reason}" if reason else ""))


__all__ = [
    "SyncError",
    "IdentityLookupFailure",
    "IdentityConflict",
    "UnrepresentableTarget",
    "ConfigurationError",
    "PersistentStateCorruption",
]
