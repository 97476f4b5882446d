# /providers/sync/_mod_PLEX.py
# WatchSync Plex capability module
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

__all__ = ["OPS", "CAPS", "plex_rating"]

from ._mod_base import BaseOps, make_caps


def plex_rating(r: int) -> float:
    # Plex stores userRating as 0.0-10.0
    return float(r)


# Plex has no notion of dropped or on-hold titles.
CAPS = make_caps(
    name="plex",
    label="Plex",
    data_types=("watchlist", "ratings", "history"),
    media_types={
        "watchlist": ("movie", "show"),
        "ratings": ("movie", "show", "episode"),
        "history": ("movie", "show", "episode"),
    },
    id_namespaces=("plex", "imdb", "tmdb", "tvdb"),
    status_map={
        "watchlist": ("watchlist",),
        "watching": ("history",),
        "completed": ("history",),
    },
    rating_fn=plex_rating,
)


class _PLEXOPS(BaseOps):
    CAPS = CAPS


OPS = _PLEXOPS()
