# WatchSync test scripts
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from _logging import force_debug  # noqa: E402
from ws_platform.models import Operation  # noqa: E402


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    monkeypatch.setenv("WS_STATE_DIR", str(tmp_path / "state"))
    return tmp_path


@pytest.fixture(autouse=True)
def _quiet_debug() -> Iterable[None]:
    force_debug(False)
    yield
    force_debug(None)


@pytest.fixture()
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    slept: list[float] = []
    monkeypatch.setattr("ws_platform.orchestrator._applier.time.sleep", lambda s: slept.append(s))
    return slept


@dataclass
class FakeAdapter:
    """Serves fixed rows per data type; `fail_on` makes that fetch raise."""

    rows: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    fail_on: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)

    def fetch(self, data_type: str) -> list[dict[str, Any]]:
        self.calls.append(data_type)
        if data_type in self.fail_on:
            raise ConnectionError(f"{data_type} endpoint down")
        return [dict(r) for r in self.rows.get(data_type) or ()]


@dataclass
class RecordingSink:
    """Confirms everything unless a key matches `reject` or the target is in `down`."""

    reject: set[str] = field(default_factory=set)
    down: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, list[Operation], bool]] = field(default_factory=list)

    def apply(self, target: str, data_type: str, operations: Sequence[Operation], dry_run: bool = False) -> Mapping[str, Any]:
        ops = list(operations)
        self.calls.append((target, data_type, ops, dry_run))
        if target in self.down:
            raise ConnectionError(f"{target} unavailable")
        ok = [o.key for o in ops if not any(r in o.key for r in self.reject)]
        return {"ok": True, "confirmed_keys": ok, "errors": len(ops) - len(ok)}

    def ops_for(self, target: str, data_type: str | None = None) -> list[Operation]:
        out: list[Operation] = []
        for t, dt, ops, _ in self.calls:
            if t == target and (data_type is None or dt == data_type):
                out.extend(ops)
        return out


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


def base_config(**sections: Any) -> dict[str, Any]:
    cfg: dict[str, Any] = {
        "services": {
            "trakt": {"enabled": True},
            "simkl": {"enabled": True},
            "imdb": {"enabled": True},
            "plex": {"enabled": True},
        },
        "resolution": {
            "strategy": "preference",
            "source_preference": ["trakt", "imdb", "plex", "simkl"],
            "tolerance_seconds": 3600,
        },
        "sync": {"watchlist": True, "ratings": True, "reviews": False, "history": True},
        "runtime": {"collect_workers": 2},
    }
    for k, v in sections.items():
        cfg[k] = {**cfg.get(k, {}), **v}
    return cfg
