# WatchSync test scripts
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from conftest import FakeAdapter, RecordingSink, base_config
from ws_platform.errors import ConfigurationError, IdentityLookupFailure, PersistentStateCorruption
from ws_platform.models import ExternalId
from ws_platform.orchestrator.facade import Orchestrator
from ws_platform.orchestrator._state_store import StateStore

T0 = 1_700_000_000
FIGHT_CLUB = {"imdb": "tt0137523", "tmdb": "550"}
SHAWSHANK = {"imdb": "tt0111161"}


def adapters(**rows: dict[str, list[dict[str, Any]]]) -> dict[str, FakeAdapter]:
    out = {s: FakeAdapter() for s in ("trakt", "simkl", "imdb", "plex")}
    for s, per_type in rows.items():
        out[s].rows = per_type
    return out


def fixture_rows() -> dict[str, Any]:
    return {
        "trakt": {
            "ratings": [{"ids": {**FIGHT_CLUB, "trakt": "432"}, "rating": 9, "timestamp": T0 + 10, "title": "Fight Club"}],
            "watchlist": [{"ids": SHAWSHANK, "timestamp": T0, "title": "The Shawshank Redemption"}],
        },
        "simkl": {
            "ratings": [{"ids": {**FIGHT_CLUB, "simkl": "5"}, "rating": 6, "timestamp": T0 + 20}],
        },
    }


def orchestrator(tmp_path: Path, sink: RecordingSink, cfg: dict | None = None, **kw: Any) -> Orchestrator:
    kw.setdefault("adapters", adapters(**fixture_rows()))
    return Orchestrator(config=cfg or base_config(), sink=sink, state_path=tmp_path / "state", **kw)


def test_end_to_end_preference_run(tmp_path: Path, sink: RecordingSink) -> None:
    summary = orchestrator(tmp_path, sink).run(now=T0 + 100)

    assert summary["ok"] is True
    assert summary["missing"] == []
    # trakt already holds the winning rating and the watchlist entry
    assert sink.ops_for("trakt") == []
    for target in ("simkl", "imdb", "plex"):
        ratings = sink.ops_for(target, "ratings")
        assert [(o.value, o.timestamp) for o in ratings] == [(9.0 if target == "plex" else 9, T0 + 10)]
        assert [o.collection for o in sink.ops_for(target, "watchlist")] == ["watchlist"]
    assert sink.ops_for("simkl", "watchlist")[0].value == "plantowatch"

    store = StateStore(tmp_path / "state")
    assert store.load_watermarks()["plex"] == {"ratings": T0 + 10, "watchlist": T0}
    assert store.load_pending() == {}
    assert store.load_identity().get("trakt:432") == store.load_identity().get("simkl:5")


def test_second_run_is_quiet(tmp_path: Path, sink: RecordingSink) -> None:
    orch = orchestrator(tmp_path, sink)
    orch.run(now=T0 + 100)
    sink.calls.clear()
    summary = orch.run(now=T0 + 200)
    assert all(p["operations"] == 0 for per in summary["plans"].values() for p in per.values())
    assert sink.calls == []


def test_dry_run_writes_nothing_and_matches_real_plan(tmp_path: Path, sink: RecordingSink) -> None:
    store = StateStore(tmp_path / "state")

    dry = orchestrator(tmp_path, sink).run(dry_run=True, now=T0 + 100)
    assert dry["dry_run"] is True
    assert all(call[3] is True for call in sink.calls)
    assert not store.watermarks.exists()
    assert not store.pending.exists()
    assert not store.identity_map.exists()
    planned = {t: store.load_last_plan(t, "ratings") for t in ("imdb", "plex")}
    assert all(p["dry_run"] is True and p["operations"] for p in planned.values())

    orchestrator(tmp_path, sink).run(now=T0 + 100)
    for t, before in planned.items():
        real = store.load_last_plan(t, "ratings")
        assert real["dry_run"] is False
        assert real["operations"] == before["operations"]


def test_failed_source_is_missing_and_not_written(tmp_path: Path, sink: RecordingSink) -> None:
    ads = adapters(**fixture_rows())
    ads["simkl"].fail_on = {"ratings"}
    events: list[dict[str, Any]] = []
    summary = orchestrator(tmp_path, sink, adapters=ads, on_progress=lambda line: events.append(json.loads(line))).run(now=T0)

    assert summary["missing"] == ["simkl"]
    assert "simkl" not in summary["plans"]
    assert sink.ops_for("simkl") == []
    assert {"event": "plan:skipped", "dst": "simkl", "reason": "target snapshot unavailable"} in events
    # the others are still served
    assert sink.ops_for("plex", "ratings")


def test_unconfirmed_operation_is_retried_below_watermark(tmp_path: Path) -> None:
    cfg = base_config(sync={"watchlist": False, "history": False})
    rows = {"trakt": {"ratings": [
        {"ids": {"imdb": "tt0000001"}, "rating": 8, "timestamp": T0 + 10},
        {"ids": {"imdb": "tt0000002"}, "rating": 7, "timestamp": T0 + 50},
    ]}}
    sink = RecordingSink(reject={"plex:ratings:add:id:1"})
    orch = orchestrator(tmp_path, sink, cfg, adapters=adapters(**rows))

    first = orch.run(now=T0 + 100)
    assert first["ok"] is False
    assert first["plans"]["plex"]["ratings"]["pending"] == 1
    store = StateStore(tmp_path / "state")
    assert store.load_watermarks()["plex"]["ratings"] == T0 + 50
    assert set(store.load_pending()["plex"]["ratings"]) == {"id:1"}

    sink.reject.clear()
    sink.calls.clear()
    second = orch.run(now=T0 + 200)
    assert [o.ref for o in sink.ops_for("plex")] == ["id:1"]
    assert sink.ops_for("simkl") == []
    assert second["ok"] is True
    assert store.load_pending() == {}
    assert store.load_watermarks()["plex"]["ratings"] == T0 + 50


def test_force_full_sync_replans_everything(tmp_path: Path, sink: RecordingSink) -> None:
    orch = orchestrator(tmp_path, sink)
    orch.run(now=T0 + 100)
    sink.calls.clear()
    orch.run(force_full_sync=True, now=T0 + 200)
    assert len(sink.ops_for("plex", "ratings")) == 1


def test_rules_feed_history_plans(tmp_path: Path, sink: RecordingSink) -> None:
    cfg = base_config(sync={"mark_rated_as_watched": True, "remove_watched_from_watchlists": True})
    rows = fixture_rows()
    # the rated title is also on simkl's watchlist
    rows["simkl"]["watchlist"] = [{"ids": FIGHT_CLUB, "timestamp": T0}]
    summary = orchestrator(tmp_path, sink, cfg, adapters=adapters(**rows)).run(now=T0 + 100)

    assert summary["rules"] == ["mark_rated_as_watched", "remove_watched_from_watchlists"]
    assert [o.watched_at for o in sink.ops_for("plex", "history")] == [T0 + 10]
    assert [(o.kind, o.ids_dict["imdb"]) for o in sink.ops_for("simkl", "watchlist")] == [
        ("add", "tt0111161"), ("remove", "tt0137523"),
    ]


def test_abort_stops_at_stage_boundary(tmp_path: Path, sink: RecordingSink) -> None:
    def on_progress(line: str) -> None:
        if json.loads(line)["event"] == "collect:done":
            orch.request_abort()

    orch = orchestrator(tmp_path, sink, on_progress=on_progress)
    summary = orch.run(now=T0)
    assert summary["aborted"] == "collect"
    assert sink.calls == []
    assert not StateStore(tmp_path / "state").watermarks.exists()


def test_invalid_config_fails_before_collect(tmp_path: Path, sink: RecordingSink) -> None:
    ads = adapters()
    cfg = base_config(resolution={"strategy": "loudest"})
    with pytest.raises(ConfigurationError):
        orchestrator(tmp_path, sink, cfg, adapters=ads).run()
    assert all(a.calls == [] for a in ads.values())


def test_corrupt_state_stops_the_run(tmp_path: Path, sink: RecordingSink) -> None:
    state = tmp_path / "state"
    state.mkdir()
    (state / "watermarks.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(PersistentStateCorruption):
        orchestrator(tmp_path, sink).run(now=T0)
    assert sink.calls == []


def test_unresolved_record_does_not_overwrite_other_services(tmp_path: Path, sink: RecordingSink) -> None:
    def lookup(ext: ExternalId) -> ExternalId | None:
        raise IdentityLookupFailure(ext.namespace, ext.value, "tmdb 503")

    cfg = base_config(sync={"watchlist": False, "history": False})
    rows = {
        "plex": {"ratings": [{"ids": {"tmdb": "777", "plex": "31"}, "rating": 5, "timestamp": T0 + 30}]},
        "trakt": {"ratings": [{"ids": {"imdb": "tt0000777", "tmdb": "777"}, "rating": 9, "timestamp": T0 + 10}]},
    }
    summary = orchestrator(tmp_path, sink, cfg, adapters=adapters(**rows), lookup=lookup).run(now=T0 + 100)

    assert sink.ops_for("trakt", "ratings") == []
    assert [o.value for o in sink.ops_for("simkl", "ratings")] == [9]
    assert summary["ok"] is True


def test_dry_run_targets_are_planned_but_not_written(tmp_path: Path, sink: RecordingSink) -> None:
    store = StateStore(tmp_path / "state")
    cfg = base_config(sync={"dry_run_targets": ["plex"]})
    summary = orchestrator(tmp_path, sink, cfg).run(now=T0 + 100)

    assert summary["dry_run"] is False
    assert summary["dry_run_targets"] == ["plex"]
    assert summary["plans"]["plex"]["ratings"]["dry_run"] is True
    assert all(dry is (target == "plex") for target, _, _, dry in sink.calls)
    assert sink.ops_for("plex", "ratings")
    marks = store.load_watermarks()
    assert "plex" not in marks
    assert marks["simkl"]["ratings"] == T0 + 10
    assert store.load_last_plan("plex", "ratings")["dry_run"] is True
    assert store.identity_map.exists()

    # next real run still owes plex everything; the others are quiet
    sink.calls.clear()
    orchestrator(tmp_path, sink).run(now=T0 + 200)
    assert [o.value for o in sink.ops_for("plex", "ratings")] == [9.0]
    assert sink.ops_for("simkl") == []


def test_config_file_is_read_when_none_is_given(config_base: Path, sink: RecordingSink) -> None:
    (config_base / "config.json").write_text(
        json.dumps({"sync": {"watchlist": False, "history": False}}), encoding="utf-8",
    )
    orch = Orchestrator(adapters=adapters(**fixture_rows()), sink=sink)
    summary = orch.run(now=T0 + 100)

    assert summary["data_types"] == ["ratings"]
    assert sink.ops_for("plex", "watchlist") == []
    assert StateStore(config_base / "state").load_watermarks()["plex"] == {"ratings": T0 + 10}
