# _logging.py
# WatchSync console logger: [MODULE] tags, colored levels, optional JSON lines file.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations
import datetime, json, os, sys, threading, time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, TextIO

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

LEVELS = {"silent": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}
COLORS = {"DEBUG": YELLOW, "INFO": BLUE, "WARN": YELLOW, "ERROR": RED, "SUCCESS": GREEN}

# Debug lines follow runtime.debug in config.json (re-read at most every 5 s)
_gate: Dict[str, Any] = {"cfg": None, "ts": 0.0, "forced": None}

def _config_file() -> Path:
    base = os.getenv("CONFIG_BASE")
    return (Path(base) if base else Path.cwd()) / "config.json"

def _debug_enabled() -> bool:
    if _gate["forced"] is not None:
        return bool(_gate["forced"])
    now = time.time()
    if _gate["cfg"] is None or now - _gate["ts"] > 5.0:
        try:
            _gate["cfg"] = json.loads(_config_file().read_text("utf-8"))
        except (OSError, ValueError):
            _gate["cfg"] = {}
        _gate["ts"] = now
    cfg = _gate["cfg"] if isinstance(_gate["cfg"], dict) else {}
    return bool((cfg.get("runtime") or {}).get("debug"))

def force_debug(on: bool | None) -> None:
    """Override the config-driven debug gate (None restores it)."""
    _gate["forced"] = on


class Logger:
    def __init__(
        self,
        stream: TextIO = sys.stdout,
        level: str = "info",
        *,
        color: Optional[bool] = None,
        json_path: Optional[str] = None,
        _ctx: Optional[Dict[str, Any]] = None,
        _json: Optional[TextIO] = None,
        _lock: Optional[threading.Lock] = None,
    ):
        self.stream = stream
        self.level = level if level in LEVELS else "info"
        self.color = stream.isatty() if color is None and hasattr(stream, "isatty") else bool(color)
        self._ctx: Dict[str, Any] = dict(_ctx or {})
        self._lock = _lock or threading.Lock()
        self._json = _json
        if json_path and self._json is None:
            self._json = open(json_path, "a", encoding="utf-8")

    def bind(self, **ctx: Any) -> "Logger":
        merged = {**self._ctx, **ctx}
        child = Logger(self.stream, self.level, color=self.color, _ctx=merged, _json=self._json, _lock=self._lock)
        return child

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    def set_level(self, level: str) -> None:
        if level in LEVELS:
            self.level = level

    # Output
    def _line(self, tag: str, msg: str) -> str:
        mod = str(self._ctx.get("module") or "").upper()
        ts = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        shown = f"{COLORS[tag]}{tag}{RESET}" if self.color else tag
        stamp = f"{DIM}[{ts}]{RESET}" if self.color else f"[{ts}]"
        return " ".join(p for p in (stamp, f"[{mod}]" if mod else "", shown, msg) if p)

    def _emit(self, severity: str, tag: str, parts: tuple[Any, ...], extra: Optional[Mapping[str, Any]]) -> None:
        if severity == "debug":
            if not _debug_enabled():
                return
        elif LEVELS[severity] < LEVELS[self.level]:
            return
        msg = " ".join(str(p) for p in parts)
        with self._lock:
            self.stream.write(self._line(tag, msg) + "\n")
            self.stream.flush()
            if self._json is not None:
                rec: Dict[str, Any] = {
                    "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds"),
                    "level": tag,
                    "msg": msg,
                    "ctx": self._ctx,
                }
                if extra:
                    rec["extra"] = dict(extra)
                self._json.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
                self._json.flush()

    def debug(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("debug", "DEBUG", parts, extra)

    def info(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "INFO", parts, extra)

    def success(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "SUCCESS", parts, extra)

    def warn(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("warn", "WARN", parts, extra)

    warning = warn

    def error(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("error", "ERROR", parts, extra)

    # log("text", level="WARNING", module="META")
    def __call__(self, message: str, *, level: str = "INFO", module: Optional[str] = None,
                 extra: Optional[Mapping[str, Any]] = None) -> None:
        target = self.bind(module=module) if module else self
        fn = {
            "debug": target.debug,
            "warn": target.warn,
            "warning": target.warn,
            "error": target.error,
            "success": target.success,
        }.get((level or "INFO").lower(), target.info)
        fn(message, extra=extra)


# default instance; WS_LOG_LEVEL / WS_LOG_JSON tune it from the environment
log = Logger(level=os.getenv("WS_LOG_LEVEL", "info").lower(), json_path=os.getenv("WS_LOG_JSON") or None)

__all__ = ["Logger", "log", "LEVELS", "force_debug"]
