# ws_platform/orchestrator/_providers.py
# service capability discovery for orchestrator.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import importlib
import pkgutil
from types import ModuleType
from collections.abc import Iterator, Mapping
from typing import Any

from _logging import log

from ._types import CapabilityOps

_log = log.child("providers")


def _iter_sync_modules() -> Iterator[ModuleType]:
    import providers.sync as syncpkg

    for m in pkgutil.iter_modules(list(syncpkg.__path__)):
        if not m.name.startswith("_mod_") or m.name == "_mod_base":
            continue
        try:
            yield importlib.import_module(f"providers.sync.{m.name}")
        except ImportError as e:
            _log.error(f"load_failed {m.name}: {e}")


def _resolve_ops_from_module(mod: ModuleType) -> CapabilityOps | None:
    needed = ("name", "label", "features", "capabilities")
    obj = getattr(mod, "OPS", None)
    if obj and all(hasattr(obj, fn) for fn in needed):
        return obj  # type: ignore[return-value]
    return None


def load_sync_providers() -> dict[str, CapabilityOps]:
    out: dict[str, CapabilityOps] = {}
    for mod in _iter_sync_modules():
        ops = _resolve_ops_from_module(mod)
        if ops:
            out[str(ops.name()).lower()] = ops
    return out


def capabilities_for(
    services: Mapping[str, Any],
    providers: Mapping[str, CapabilityOps] | None = None,
) -> dict[str, Any]:
    """Capabilities of every enabled service, with per-service status_map overrides applied."""
    providers = providers if providers is not None else load_sync_providers()
    out: dict[str, Any] = {}
    for name, svc in sorted(services.items()):
        if not getattr(svc, "enabled", False):
            continue
        ops = providers.get(name)
        if ops is None:
            _log.warn(f"no capability module for service {name!r}; it will not receive writes")
            continue
        caps = ops.capabilities()
        out[name] = caps.with_status_map(getattr(svc, "status_map", None))
    return out
