from __future__ import annotations
import time
from typing import Any, Callable, Dict, Iterable, List, Sequence

from ..models import Operation, Plan

#--- Retry wrapper with exponential backoff -----------------------------------
def _retry(fn: Callable[[], Any], *, attempts: int = 3, base_sleep: float = 0.5) -> Any:
    last: Exception | None = None
    for i in range(max(1, int(attempts))):
        try:
            return fn()
        except Exception as e:
            last = e
            if i + 1 < attempts:
                time.sleep(base_sleep * (2 ** i))
    raise last  # type: ignore[misc]

#--- Normalize sink response into standard structure --------------------------
def _normalize(res: Any, ops: Sequence[Operation]) -> Dict[str, Any]:
    res = dict(res or {})
    attempted = len(ops)
    ok = bool(res.get("ok", True))
    valid = {o.key for o in ops}
    if "confirmed_keys" in res:
        ckeys = [k for k in (res.get("confirmed_keys") or []) if k in valid]
    elif ok and not res.get("errors"):
        # a sink that reports plain success confirms the whole chunk
        ckeys = [o.key for o in ops]
    else:
        ckeys = []
    errors = res.get("errors") or 0
    n_errors = len(errors) if isinstance(errors, list) else int(errors)
    return {
        "ok": ok,
        "attempted": attempted,
        "confirmed": len(ckeys),
        "confirmed_keys": ckeys,
        "skipped": max(0, attempted - len(ckeys) - n_errors),
        "errors": n_errors,
    }

def _failed(ops: Sequence[Operation], err: Exception) -> Dict[str, Any]:
    return {
        "ok": False,
        "attempted": len(ops),
        "confirmed": 0,
        "confirmed_keys": [],
        "skipped": 0,
        "errors": len(ops),
        "error": f"{type(err).__name__}: {err}",
    }

#--- Chunked apply ------------------------------------------------------------
def apply_plan(sink: Any, plan: Plan, *, dry_run: bool, emit: Callable[..., None],
               chunk_size: int = 100, chunk_pause_ms: int = 0, retries: int = 3,
               base_sleep: float = 0.5) -> Dict[str, Any]:
    """Send a plan to its sink chunk by chunk.

    A chunk that still raises after `retries` attempts counts as failed; the
    remaining chunks are still sent.
    """
    ops = list(plan.operations)
    total = len(ops)
    agg: Dict[str, Any] = {"ok": True, "attempted": 0, "confirmed": 0, "confirmed_keys": [],
                           "skipped": 0, "errors": 0, "dry_run": bool(dry_run)}
    emit("apply:start", dst=plan.target, feature=plan.data_type, count=total, dry_run=bool(dry_run))
    if total == 0:
        emit("apply:done", dst=plan.target, feature=plan.data_type, result=agg)
        return agg

    csize = int(chunk_size or 0)
    if csize <= 0:
        csize = total
    done = 0
    for i in range(0, total, csize):
        chunk = ops[i:i + csize]
        try:
            raw = _retry(lambda: sink.apply(plan.target, plan.data_type, chunk, dry_run),
                         attempts=retries, base_sleep=base_sleep)
            res = _normalize(raw, chunk)
        except Exception as e:
            res = _failed(chunk, e)
            emit("apply:chunk_failed", dst=plan.target, feature=plan.data_type, error=res["error"])
        agg["ok"] = agg["ok"] and res["ok"]
        for k in ("attempted", "confirmed", "skipped", "errors"):
            agg[k] += res[k]
        agg["confirmed_keys"].extend(res["confirmed_keys"])
        done += len(chunk)
        if total > csize:
            emit("apply:progress", dst=plan.target, feature=plan.data_type, done=done, total=total, ok=res["ok"])
        pause = int(chunk_pause_ms or 0)
        if pause and done < total:
            time.sleep(pause / 1000.0)

    emit("apply:done", dst=plan.target, feature=plan.data_type,
         attempted=agg["attempted"], confirmed=agg["confirmed"],
         skipped=agg["skipped"], errors=agg["errors"], dry_run=bool(dry_run))
    return agg

#--- Watermarks ---------------------------------------------------------------
def advance_watermark(current: int, plan: Plan, confirmed_keys: Iterable[str]) -> int:
    """Max resolved timestamp among confirmed operations; never moves backwards."""
    confirmed = set(confirmed_keys or ())
    stamps: List[int] = [o.timestamp for o in plan.operations if o.key in confirmed and o.timestamp > 0]
    if not stamps:
        return int(current or 0)
    return max(int(current or 0), max(stamps))
