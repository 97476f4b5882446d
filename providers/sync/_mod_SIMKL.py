# /providers/sync/_mod_SIMKL.py
# WatchSync Simkl capability module
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

__all__ = ["OPS", "CAPS"]

from ._mod_base import BaseOps, make_caps

# Simkl keeps every status inside its list endpoint; the native label selects the list.
CAPS = make_caps(
    name="simkl",
    label="Simkl",
    data_types=("watchlist", "ratings", "history"),
    media_types={
        "watchlist": ("movie", "show"),
        "ratings": ("movie", "show"),
        "history": ("movie", "show", "episode"),
    },
    id_namespaces=("simkl", "imdb", "tmdb", "tvdb"),
    status_map={
        "watchlist": ("watchlist",),
        "watching": ("watchlist",),
        "completed": ("watchlist",),
        "dropped": ("watchlist",),
        "hold": ("watchlist",),
    },
    native_status={
        "watchlist": "plantowatch",
        "watching": "watching",
        "completed": "completed",
        "dropped": "dropped",
        "hold": "hold",
    },
    supports_update=False,
)


class _SIMKLOPS(BaseOps):
    CAPS = CAPS


OPS = _SIMKLOPS()
