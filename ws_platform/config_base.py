# ws_platform/config_base.py
# Config file location, defaults and atomic persistence.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict

from _logging import log

# --- locations ----------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """Where config.json lives: $CONFIG_BASE, /config inside the container image, else the repo root."""
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


def STATE_DIR() -> Path:
    """State directory: $WS_STATE_DIR, else <CONFIG_BASE>/.ws_state."""
    env = os.getenv("WS_STATE_DIR")
    if env:
        return Path(env)
    return CONFIG_BASE() / ".ws_state"


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Services ------------------------------------------------------------
    "services": {
        "trakt": {"enabled": True},                     # status_map: optional override, e.g. {"watching": ["history"]}
        "simkl": {"enabled": True},
        "imdb": {"enabled": True},
        "plex": {"enabled": True},
    },

    # --- Conflict resolution -------------------------------------------------
    "resolution": {
        "strategy": "preference",                       # newest | oldest | preference | merge
        "source_preference": ["trakt", "imdb", "plex", "simkl"],
        "tolerance_seconds": 3600,                      # records this close in time count as simultaneous
        "ratings_strategy": None,                       # per data type override (None = use "strategy")
        "watchlist_strategy": None,
        "reviews_strategy": None,
        "history_strategy": None,
    },

    # --- Sync ----------------------------------------------------------------
    "sync": {
        "watchlist": True,
        "ratings": True,
        "reviews": False,
        "history": True,
        "mark_rated_as_watched": False,                 # rated titles gain a history event at the rating date
        "remove_watched_from_watchlists": False,        # watched titles leave every watchlist
        "remove_watchlist_items_older_than_days": None, # int days, None = keep forever
        "force_full_sync": False,                       # ignore watermarks for this run
        "dry_run": False,                               # plan and audit only; no writes, no watermark advance
        "dry_run_targets": [],                          # services planned and audited only while the rest are written
    },

    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # enables debug log lines
        "collect_workers": 4,                           # parallel source fetches
        "apply_chunk_size": 100,                        # operations per sink call
        "apply_chunk_pause_ms": 0,                      # pause between chunks
        "apply_retries": 3,                             # attempts per chunk (exponential backoff)
    },

    # --- Metadata ------------------------------------------------------------
    "tmdb": {"api_key": ""},                            # enables id lookup for records without an imdb id
}


def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}


def _write_json_atomic(p: Path, data: Any) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


def load_config() -> Dict[str, Any]:
    """
    Read config.json and deep-merge it over DEFAULT_CFG.
    A missing or unreadable file yields the defaults; validation happens later.
    """
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError) as e:
            log.child("config").warn(f"ignoring unreadable {p}: {e}")
            user_cfg = {}
    return _deep_merge(DEFAULT_CFG, user_cfg)

