# /providers/sync/_mod_IMDB.py
# WatchSync IMDb capability module
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

__all__ = ["OPS", "CAPS"]

from ._mod_base import BaseOps, make_caps

# IMDb only addresses titles by tt-id. Watched titles become check-ins (history).
CAPS = make_caps(
    name="imdb",
    label="IMDb",
    data_types=("watchlist", "ratings", "reviews", "history"),
    media_types={
        "watchlist": ("movie", "show"),
        "ratings": ("movie", "show", "episode"),
        "reviews": ("movie", "show"),
        "history": ("movie", "show", "episode"),
    },
    id_namespaces=("imdb",),
    status_map={
        "watchlist": ("watchlist",),
        "watching": ("history",),
        "completed": ("history",),
    },
    requires_anchor=True,
)


class _IMDBOPS(BaseOps):
    CAPS = CAPS


OPS = _IMDBOPS()
