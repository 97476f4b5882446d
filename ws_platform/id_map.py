# ws_platform/id_map.py
# External id handling shared by the resolver, planner and service capability modules.
# - Normalize ids per namespace (imdb/tmdb/tvdb/trakt/simkl/plex/slug).
# - Expand Plex GUID strings into external ids.
# - Render/parse "namespace:value" keys used by the identity mapping.
# - Build the type|title|year fallback key.
from __future__ import annotations
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

NAMESPACES: Tuple[str, ...] = ("imdb", "tmdb", "tvdb", "trakt", "simkl", "plex", "slug")
NUMERIC: Tuple[str, ...] = ("tmdb", "tvdb", "trakt", "simkl", "plex")
ANCHORS: Tuple[str, ...] = ("imdb",)

__all__ = [
    "NAMESPACES", "ANCHORS",
    "normalize_id", "ids_from_guid", "ids_from", "coalesce_ids",
    "id_key", "parse_key", "keys_for_ids", "has_anchor", "title_key",
]

_CLEAN_SENTINELS = {"none", "null", "nan", "undefined", "unknown", "0", ""}

def _norm_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None

def normalize_id(namespace: str, val: Any) -> Optional[str]:
    """Normalize one id value; None when the value is empty or a sentinel."""
    k = (namespace or "").lower().strip()
    if k not in NAMESPACES:
        return None
    s = _norm_str(val)
    if not s or s.lower() in _CLEAN_SENTINELS:
        return None

    if k in NUMERIC:
        digits = re.sub(r"\D+", "", s)
        if not digits or int(digits) == 0:
            return None
        return str(int(digits))

    if k == "imdb":
        m = re.search(r"(tt\d+)", s.lower())
        if m:
            return m.group(1)
        digits = re.sub(r"\D+", "", s)
        return f"tt{digits}" if digits else None

    return s.lower()

# --- Plex GUID -> ids -----------------------------------------------------------

_GUID_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"com\.plexapp\.agents\.imdb://(?P<id>tt\d+)", re.I), "imdb"),
    (re.compile(r"com\.plexapp\.agents\.themoviedb://(?P<id>\d+)", re.I), "tmdb"),
    (re.compile(r"com\.plexapp\.agents\.thetvdb://(?P<id>\d+)", re.I), "tvdb"),
    (re.compile(r"imdb://(?:title/)?(?P<id>tt\d+)", re.I), "imdb"),
    (re.compile(r"tmdb://(?:(?:movie|show|tv)/)?(?P<id>\d+)", re.I), "tmdb"),
    (re.compile(r"tvdb://(?:(?:series|show|tv)/)?(?P<id>\d+)", re.I), "tvdb"),
    (re.compile(r"^plex://(?:movie|show|episode|season)/(?P<id>[0-9a-f]+)", re.I), "slug"),
)

def ids_from_guid(guid: Optional[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    g = _norm_str(guid)
    if not g:
        return out
    for rx, ns in _GUID_PATTERNS:
        if ns in out:
            continue
        m = rx.search(g)
        if not m:
            continue
        if ns == "slug":
            # plex:// metadata ids are opaque hex strings; keep them under plex's slug space
            out[ns] = f"plex-{m.group('id').lower()}"
            continue
        norm = normalize_id(ns, m.group("id"))
        if norm:
            out[ns] = norm
    return out

# --- Collect / merge ---------------------------------------------------------

def coalesce_ids(*many: Mapping[str, Any] | None) -> Dict[str, str]:
    """Merge several id maps; later maps never clobber an earlier value."""
    out: Dict[str, str] = {}
    for ids in many:
        if not isinstance(ids, Mapping):
            continue
        for k in NAMESPACES:
            if k in out:
                continue
            n = normalize_id(k, ids.get(k))
            if n:
                out[k] = n
    return out

def ids_from(item: Mapping[str, Any]) -> Dict[str, str]:
    """
    Pull ids from:
      - item["ids"],
      - top-level namespace fields,
      - item["guid"] / item["guids"] (Plex).
    """
    base = item.get("ids") if isinstance(item.get("ids"), Mapping) else {}
    top = {k: item.get(k) for k in NAMESPACES if item.get(k) is not None}
    guids: List[str] = []
    for g in (item.get("guid"), (base or {}).get("guid")):
        if g:
            guids.append(str(g))
    extra = item.get("guids")
    if isinstance(extra, (list, tuple)):
        guids.extend(str(g) for g in extra if g)
    from_guid = coalesce_ids(*(ids_from_guid(g) for g in guids))
    return coalesce_ids(base or {}, top, from_guid)

# --- Keys --------------------------------------------------------------------

def id_key(namespace: str, value: str) -> str:
    return f"{namespace}:{value}".lower()

def parse_key(key: str) -> Tuple[str, str]:
    ns, _, val = str(key).partition(":")
    return ns, val

def keys_for_ids(ids: Mapping[str, Any]) -> List[str]:
    """All mapping keys for an id map, in namespace order."""
    out: List[str] = []
    for k in NAMESPACES:
        n = normalize_id(k, ids.get(k))
        if n:
            out.append(id_key(k, n))
    return out

def has_anchor(ids: Mapping[str, Any]) -> bool:
    return any(normalize_id(k, ids.get(k)) for k in ANCHORS)

def title_key(title: Any, year: Any, media_type: Any) -> Optional[str]:
    """Fallback key type|title|year for records whose ids resolve nothing."""
    t = _norm_str(title)
    if not t:
        return None
    y = _norm_str(year) or ""
    typ = _norm_str(media_type) or "movie"
    return f"{typ.lower()}|title:{' '.join(t.lower().split())}|year:{y}"
