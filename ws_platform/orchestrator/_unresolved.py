from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, Set

from ..models import Plan
from ._planner import redirect_ref

# Pending-retry ledger: operations a target did not confirm, keyed by item reference.
#   {target: {data_type: {ref: {"keys": [...], "hint": str, "ts": int, "attempts": int, "title": str}}}}
# Entries are planned again next run regardless of the watermark.


class PendingLedger:
    def __init__(self, data: Dict[str, Any] | None = None):
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {
            str(t): {str(dt): dict(v) for dt, v in (per or {}).items()}
            for t, per in (data or {}).items()
        }

    def _bucket(self, target: str, data_type: str) -> Dict[str, Any]:
        return self.data.setdefault(target, {}).setdefault(data_type, {})

    def refs(self, target: str, data_type: str) -> Set[str]:
        return set((self.data.get(target) or {}).get(data_type) or {})

    def redirect(self, find: Callable[[int], int]) -> int:
        """Re-key entries of merged identities onto their survivor; returns how many moved."""
        moved = 0
        for per in self.data.values():
            for dt, bucket in list(per.items()):
                out: Dict[str, Any] = {}
                for ref, node in sorted(bucket.items()):
                    new = redirect_ref(ref, find)
                    moved += new != ref
                    prev = out.get(new)
                    if prev is None:
                        out[new] = dict(node)
                        continue
                    prev["keys"] = sorted(set(prev.get("keys") or ()) | set(node.get("keys") or ()))
                    prev["attempts"] = max(int(prev.get("attempts") or 0), int(node.get("attempts") or 0))
                per[dt] = out
        return moved

    def settle(self, target: str, data_type: str, plan: Plan, confirmed_keys: Iterable[str],
               *, hint: str, now: int) -> Dict[str, int]:
        """Replace the bucket with the refs whose operations were not all confirmed."""
        confirmed = set(confirmed_keys or ())
        before = self._bucket(target, data_type)
        after: Dict[str, Any] = {}
        for op in plan.operations:
            if op.key in confirmed:
                continue
            node = after.get(op.ref)
            if node is None:
                prev = before.get(op.ref) or {}
                node = {
                    "keys": [],
                    "hint": hint,
                    "ts": now,
                    "attempts": int(prev.get("attempts") or 0) + 1,
                    "title": op.title,
                }
                after[op.ref] = node
            node["keys"].append(op.key)
        cleared = len(set(before) - set(after))
        self.data[target][data_type] = after
        return {"pending": len(after), "cleared": cleared}

    def to_dict(self) -> Dict[str, Any]:
        return {
            t: {dt: dict(sorted(v.items())) for dt, v in sorted(per.items()) if v}
            for t, per in sorted(self.data.items())
            if any(per.values())
        }
