# /providers/sync/_mod_TRAKT.py
# WatchSync Trakt capability module
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

__all__ = ["OPS", "CAPS"]

from ._mod_base import BaseOps, make_caps

# Ratings are POSTed to /sync/ratings which overwrites, so changed values go out as upserts.
# Watching/completed titles land in history; shows cannot be added to history.
CAPS = make_caps(
    name="trakt",
    label="Trakt",
    data_types=("watchlist", "ratings", "reviews", "history"),
    media_types={
        "watchlist": ("movie", "show"),
        "ratings": ("movie", "show"),
        "reviews": ("movie", "show"),
        "history": ("movie", "episode"),
    },
    id_namespaces=("trakt", "imdb", "tmdb", "tvdb", "slug"),
    status_map={
        "watchlist": ("watchlist",),
        "watching": ("history",),
        "completed": ("history",),
    },
    supports_update=False,
)


class _TraktOPS(BaseOps):
    CAPS = CAPS


OPS = _TraktOPS()
