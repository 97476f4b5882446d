# WatchSync test scripts
from __future__ import annotations

import json
import random
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from ws_platform.errors import IdentityLookupFailure, PersistentStateCorruption
from ws_platform.identity import IdentityMapping, IdentityResolver, IdentityStore
from ws_platform.models import FLAG_UNRESOLVED, ExternalId, RawRecord


def rec(source: str, **ids: str) -> RawRecord:
    return RawRecord(source=source, data_type="watchlist", ids=dict(ids), timestamp=1_700_000_000)


def test_shared_id_resolves_to_same_identity() -> None:
    r = IdentityResolver(IdentityMapping())
    a = r.resolve(rec("trakt", imdb="tt0137523", trakt="432"))
    b = r.resolve(rec("plex", imdb="tt0137523", plex="9"))
    assert a == b
    # the plex id now points at the same identity
    assert r.mapping.get("plex:9") == a


def test_disjoint_ids_get_distinct_identities() -> None:
    r = IdentityResolver(IdentityMapping())
    a = r.resolve(rec("trakt", imdb="tt0000001"))
    b = r.resolve(rec("trakt", imdb="tt0000002"))
    assert a != b
    assert r.stats["allocated"] == 2


def test_bridge_record_merges_to_lowest_identity() -> None:
    r = IdentityResolver(IdentityMapping())
    a = r.resolve(rec("trakt", imdb="tt0000001"))
    b = r.resolve(rec("simkl", tmdb="77"))
    assert (a, b) == (1, 2)

    c = r.resolve(rec("plex", imdb="tt0000001", tmdb="77"))
    assert c == 1
    assert r.mapping.get("tmdb:77") == 1
    assert r.mapping.find(2) == 1
    assert len(r.conflicts) == 1
    assert r.conflicts[0].survivor == 1 and r.conflicts[0].merged == [2]


def _merge_in_order(pairs: list[tuple[int, int]]) -> dict[str, int]:
    m = IdentityMapping()
    for i, key in enumerate(("imdb:tt1", "tmdb:2", "tvdb:3", "trakt:4"), start=1):
        m.assign(key, m.allocate())
        assert m.get(key) == i
    for a, b in pairs:
        m.union(a, b)
    return {k: m.get(k) for k in ("imdb:tt1", "tmdb:2", "tvdb:3", "trakt:4")}


def test_merge_order_does_not_change_outcome() -> None:
    one = _merge_in_order([(1, 2), (3, 4), (2, 4)])
    two = _merge_in_order([(4, 3), (2, 3), (1, 4)])
    three = _merge_in_order([(3, 4), (4, 2), (2, 1)])
    assert one == two == three == {"imdb:tt1": 1, "tmdb:2": 1, "tvdb:3": 1, "trakt:4": 1}


def test_record_without_ids_gets_provisional_identity() -> None:
    r = IdentityResolver(IdentityMapping())
    x = rec("imdb")
    y = rec("imdb")
    assert r.resolve(x) < 0
    assert r.resolve(y) < 0
    assert x.identity != y.identity
    assert FLAG_UNRESOLVED in x.flags
    assert r.mapping.index == {}


def test_lookup_adds_anchor_and_is_cached() -> None:
    calls: list[ExternalId] = []

    def lookup(ext: ExternalId) -> ExternalId | None:
        calls.append(ext)
        return ExternalId("imdb", "tt0137523") if ext == ExternalId("tmdb", "550") else None

    r = IdentityResolver(IdentityMapping(), lookup)
    anchored = r.resolve(rec("trakt", imdb="tt0137523"))
    a = rec("plex", tmdb="550")
    b = rec("simkl", tmdb="550")
    # first record has no mapped key -> lookup; second hits the mapping directly
    assert r.resolve(a) == anchored
    assert r.resolve(b) == anchored
    assert a.ids["imdb"] == "tt0137523"
    assert calls == [ExternalId("tmdb", "550")]


def test_lookup_failure_leaves_record_unresolved_and_is_not_retried() -> None:
    calls: list[ExternalId] = []

    def lookup(ext: ExternalId) -> ExternalId | None:
        calls.append(ext)
        raise IdentityLookupFailure(ext.namespace, ext.value, "tmdb 503")

    r = IdentityResolver(IdentityMapping(), lookup)
    a = rec("plex", tmdb="550")
    b = rec("simkl", tmdb="550")
    assert r.resolve(a) < 0
    assert r.resolve(b) < 0
    assert a.unresolved and b.unresolved
    assert len(calls) == 1
    assert r.stats["lookup_failures"] == 2
    assert r.mapping.get("tmdb:550") is None


def test_store_round_trip_and_missing_file(tmp_path: Path) -> None:
    store = IdentityStore(tmp_path / "identity_map.json")
    assert store.load().index == {}

    m = IdentityMapping()
    r = IdentityResolver(m)
    r.resolve(rec("trakt", imdb="tt0000001"))
    r.resolve(rec("simkl", tmdb="77"))
    r.resolve(rec("plex", imdb="tt0000001", tmdb="77"))
    store.save(m)

    back = store.load()
    assert back.get("tmdb:77") == 1
    assert back.next_id == m.next_id


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"ids": {"imdb:tt1": "x"}}),
        json.dumps({"ids": {"imdb:tt1": 5}, "next_id": 3}),
    ],
)
def test_corrupt_store_raises(tmp_path: Path, content: str) -> None:
    p = tmp_path / "identity_map.json"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(PersistentStateCorruption):
        IdentityStore(p).load()


def test_tmdb_lookup_result_is_reused_on_next_encounter() -> None:
    calls: list[ExternalId] = []

    def lookup(ext: ExternalId) -> ExternalId | None:
        calls.append(ext)
        return ExternalId("imdb", "tt0111161")

    r = IdentityResolver(IdentityMapping(), lookup)
    first = r.resolve(rec("plex", tmdb="555"))
    # a fresh resolver over the same mapping still needs no lookup
    again = IdentityResolver(r.mapping, lookup).resolve(rec("simkl", tmdb="555"))
    assert first == again
    assert calls == [ExternalId("tmdb", "555")]
    assert r.mapping.get("imdb:tt0111161") == first


def test_identity_of_follows_later_merges() -> None:
    r = IdentityResolver(IdentityMapping())
    early = rec("simkl", tmdb="77")
    r.resolve(rec("trakt", imdb="tt0000001"))
    r.resolve(early)
    assert early.identity == 2
    r.resolve(rec("plex", imdb="tt0000001", tmdb="77"))
    assert r.identity_of(early) == 1


def titled(source: str, title: str, year: int | None, **ids: str) -> RawRecord:
    return RawRecord(source=source, data_type="ratings", ids=dict(ids), timestamp=1_700_000_000,
                     title=title, year=year, media_type="movie")


def test_record_without_ids_matches_by_title_and_year() -> None:
    r = IdentityResolver(IdentityMapping())
    known = r.resolve(titled("trakt", "Heat", 1995, imdb="tt0113277"))
    bare = titled("imdb", "  heat ", 1995)
    assert r.resolve(bare) == known
    assert not bare.unresolved
    assert r.stats["title_matches"] == 1

    # a different year is a different title
    assert r.resolve(titled("imdb", "Heat", 1986)) < 0


def test_title_match_skips_lookup_and_maps_new_ids() -> None:
    calls: list[ExternalId] = []

    def lookup(ext: ExternalId) -> ExternalId | None:
        calls.append(ext)
        raise IdentityLookupFailure(ext.namespace, ext.value, "tmdb 503")

    r = IdentityResolver(IdentityMapping(), lookup)
    known = r.resolve(titled("trakt", "Heat", 1995, imdb="tt0113277"))
    assert r.resolve(titled("plex", "Heat", 1995, tmdb="949")) == known
    assert calls == []
    assert r.mapping.get("tmdb:949") == known


def test_title_match_rejected_when_ids_disagree() -> None:
    r = IdentityResolver(IdentityMapping())
    first = r.resolve(titled("trakt", "The Thing", 2011, imdb="tt0905372"))
    other = r.resolve(titled("simkl", "The Thing", 2011, imdb="tt9999999"))
    assert other != first and other > 0
    assert r.stats["title_matches"] == 0


def test_title_index_follows_merges_and_persists(tmp_path: Path) -> None:
    m = IdentityMapping()
    r = IdentityResolver(m)
    r.resolve(titled("trakt", "Heat", 1995, imdb="tt0113277"))
    r.resolve(titled("simkl", "Ronin", 1998, tmdb="8195"))
    r.resolve(titled("plex", "Ronin", 1998, imdb="tt0113277", tmdb="8195"))
    assert m.by_title("movie|title:ronin|year:1998") == 1
    assert set(m.titles.values()) == {1}

    store = IdentityStore(tmp_path / "identity_map.json")
    store.save(m)
    assert store.load().by_title("movie|title:heat|year:1995") == 1


def test_concurrent_resolution_keeps_one_root_per_title() -> None:
    groups = 25
    records: list[RawRecord] = []
    for g in range(groups):
        records.append(rec("trakt", imdb=f"tt{g + 1:07d}", trakt=str(g + 1)))
        records.append(rec("simkl", tmdb=str(g + 5000), simkl=str(g + 1)))
        # bridges the two above
        records.append(rec("plex", imdb=f"tt{g + 1:07d}", tmdb=str(g + 5000), plex=str(g + 1)))
    random.Random(7).shuffle(records)

    m = IdentityMapping()
    r = IdentityResolver(m)
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(r.resolve, records))

    roots = set()
    for g in range(groups):
        linked = {m.get(k) for k in (f"imdb:tt{g + 1:07d}", f"tmdb:{g + 5000}", f"trakt:{g + 1}",
                                      f"simkl:{g + 1}", f"plex:{g + 1}")}
        assert len(linked) == 1
        roots |= linked
    assert len(roots) == groups
    assert all(m.find(v) == v for v in m.index.values())
    assert {r.identity_of(x) for x in records} == roots
