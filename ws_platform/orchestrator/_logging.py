from __future__ import annotations
import json
from typing import Any, Callable

from _logging import log as _host_log

class Emitter:
    """JSON-line progress events for the caller, mirrored to the host logger at debug."""

    def __init__(self, cb: Callable[[str], None] | None):
        self.cb = cb
        self._log = _host_log.child("orchestrator")

    def emit(self, event: str, **data: Any) -> None:
        payload = {"event": event}
        payload.update(data)
        line = json.dumps(payload, separators=(",", ":"), default=str)
        self._log.debug(line)
        if not self.cb:
            return
        try:
            self.cb(line)
        except Exception as e:
            self._log.warn(f"progress callback failed on {event}: {e}")

