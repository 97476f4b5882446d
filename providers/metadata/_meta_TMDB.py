# providers/metadata/_meta_TMDB.py
# WatchSync - TMDb external id lookup
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

import hashlib
import random
import time
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from _logging import log as _real_log
from ws_platform.errors import IdentityLookupFailure
from ws_platform.id_map import normalize_id
from ws_platform.models import ExternalId


def log(msg: str, level: str = "INFO", module: str = "META", **_: Any) -> None:
    _real_log(msg, level=level, module=module, **_)


API_BASE = "https://api.themoviedb.org/3"


class _NotFound(Exception):
    pass


class TmdbLookup:
    """Translate tmdb/tvdb ids to an imdb anchor (or tvdb/imdb to tmdb) through TMDb.

    lookup() returns None when TMDb has no match and raises
    IdentityLookupFailure when TMDb cannot be reached or keeps failing.
    """

    name = "TMDB"
    UA = "WatchSync/1.0"

    def __init__(
        self,
        api_key: str,
        *,
        ttl_hours: int = 6,
        max_retries: int = 4,
        base_ms: int = 500,
        max_ms: int = 4000,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        if not (api_key or "").strip():
            raise ValueError("TMDb API key is missing")
        self.api_key = api_key.strip()
        self.ttl = max(1, int(ttl_hours)) * 3600
        self.max_retries = max(0, int(max_retries))
        self.base_s = max(0.05, base_ms / 1000.0)
        self.max_s = max(0.1, max_ms / 1000.0)
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: dict[str, tuple[float, Any]] = {}

    # --- http -------------------------------------------------------------------

    def _retry_delay(self, attempt: int) -> float:
        delay = min(self.max_s, self.base_s * (2**attempt))
        return delay + random.uniform(0.0, 0.25)

    @staticmethod
    def _seconds_from_retry_after(header: str | None) -> float | None:
        if not header:
            return None
        header = header.strip()
        if header.isdigit():
            return float(header)
        try:
            dt = parsedate_to_datetime(header)
            return max(0.0, dt.timestamp() - time.time())
        except (TypeError, ValueError):
            return None

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{API_BASE}{path}"
        q = dict(params or {})
        q["api_key"] = self.api_key
        ck = url + "?" + "&".join(sorted(f"{k}={v}" for k, v in q.items()))
        h = hashlib.sha1(ck.encode("utf-8")).hexdigest()

        now = time.time()
        hit = self._cache.get(h)
        if hit and (now - hit[0]) < self.ttl:
            return hit[1]

        attempt = 0
        while True:
            try:
                r = self.session.get(
                    url,
                    params=q,
                    headers={"User-Agent": self.UA, "Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                if attempt >= self.max_retries:
                    log(f"TMDb request failed (n/a) at {path}: {e}", level="WARNING")
                    raise
                time.sleep(self._retry_delay(attempt))
                attempt += 1
                continue

            status = r.status_code
            if status == 404:
                raise _NotFound(path)
            if status == 429 or 500 <= status < 600:
                if attempt >= self.max_retries:
                    log(f"TMDb request failed ({status}) at {path}", level="WARNING")
                    r.raise_for_status()
                retry_after = self._seconds_from_retry_after(r.headers.get("Retry-After", "")) if status == 429 else None
                time.sleep(retry_after if retry_after is not None else self._retry_delay(attempt))
                attempt += 1
                continue

            r.raise_for_status()
            data = r.json()
            self._cache[h] = (time.time(), data)
            return data

    # --- lookups ----------------------------------------------------------------

    def _find(self, value: str, source: str) -> tuple[str, str] | None:
        data = self._get(f"/find/{value}", {"external_source": source}) or {}
        for kind, key in (("movie", "movie_results"), ("tv", "tv_results")):
            first = (data.get(key) or [None])[0]
            if isinstance(first, dict) and first.get("id"):
                return kind, str(first["id"])
        return None

    def _imdb_for(self, kind: str, tmdb_id: str) -> str | None:
        data = self._get(f"/{kind}/{tmdb_id}/external_ids") or {}
        return normalize_id("imdb", data.get("imdb_id"))

    def lookup(self, ext: ExternalId) -> ExternalId | None:
        try:
            return self._lookup(ext)
        except _NotFound:
            return None
        except requests.exceptions.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise IdentityLookupFailure(ext.namespace, ext.value, f"tmdb {status or 'unreachable'}") from e
        except ValueError as e:
            raise IdentityLookupFailure(ext.namespace, ext.value, f"tmdb bad response: {e}") from e

    def _lookup(self, ext: ExternalId) -> ExternalId | None:
        ns, val = ext.namespace, ext.value
        if ns == "imdb":
            hit = self._find(val, "imdb_id")
            return ExternalId("tmdb", hit[1]) if hit else None
        if ns == "tvdb":
            hit = self._find(val, "tvdb_id")
            if not hit:
                return None
            imdb = self._imdb_for(*hit)
            return ExternalId("imdb", imdb) if imdb else ExternalId("tmdb", hit[1])
        if ns == "tmdb":
            # movie and tv ids are separate spaces; the first one TMDb knows wins
            for kind in ("movie", "tv"):
                try:
                    imdb = self._imdb_for(kind, val)
                except _NotFound:
                    continue
                log(f"tmdb:{val} -> imdb:{imdb or 'none'} ({kind})", level="DEBUG")
                return ExternalId("imdb", imdb) if imdb else None
            return None
        return None
