# ws_platform/policy.py
# Validated configuration models and the conflict resolution policy.
# Copyright (c) 2026 WatchSync contributors
from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .models import COLLECTIONS, DATA_TYPES, STATUSES

Strategy = Literal["newest", "oldest", "preference", "merge"]

KNOWN_SERVICES: tuple[str, ...] = ("trakt", "imdb", "plex", "simkl")


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    status_map: dict[str, list[str]] | None = None

    @field_validator("status_map")
    @classmethod
    def _known_statuses(cls, v: dict[str, list[str]] | None) -> dict[str, list[str]] | None:
        if not v:
            return v
        for status, cols in v.items():
            if status not in STATUSES:
                raise ValueError(f"unknown status {status!r}")
            bad = [c for c in cols if c not in COLLECTIONS]
            if bad:
                raise ValueError(f"unknown collection(s) for {status!r}: {', '.join(bad)}")
        return v


class ResolutionConfig(BaseModel):
    strategy: Strategy = "preference"
    source_preference: list[str] = Field(default_factory=lambda: list(KNOWN_SERVICES))
    tolerance_seconds: int = Field(default=3600, ge=0)
    ratings_strategy: Strategy | None = None
    watchlist_strategy: Strategy | None = None
    reviews_strategy: Strategy | None = None
    history_strategy: Strategy | None = None

    @field_validator("source_preference")
    @classmethod
    def _non_empty(cls, v: list[str]) -> list[str]:
        out = [str(s).strip().lower() for s in v if str(s).strip()]
        if not out:
            raise ValueError("source_preference must list at least one source")
        if len(set(out)) != len(out):
            raise ValueError("source_preference contains duplicates")
        return out


class SyncOptions(BaseModel):
    watchlist: bool = True
    ratings: bool = True
    reviews: bool = False
    history: bool = True
    mark_rated_as_watched: bool = False
    remove_watched_from_watchlists: bool = False
    remove_watchlist_items_older_than_days: int | None = Field(default=None, ge=0)
    force_full_sync: bool = False
    dry_run: bool = False
    dry_run_targets: list[str] = Field(default_factory=list)

    @field_validator("dry_run_targets")
    @classmethod
    def _known_targets(cls, v: list[str]) -> list[str]:
        out = sorted({str(s).strip().lower() for s in v if str(s).strip()})
        unknown = [s for s in out if s not in KNOWN_SERVICES]
        if unknown:
            raise ValueError(f"unknown dry-run target(s): {', '.join(unknown)}")
        return out

    def enabled_types(self) -> list[str]:
        return [t for t in DATA_TYPES if getattr(self, t)]


class RuntimeConfig(BaseModel):
    debug: bool = False
    collect_workers: int = Field(default=4, ge=1)
    apply_chunk_size: int = Field(default=100, ge=1)
    apply_chunk_pause_ms: int = Field(default=0, ge=0)
    apply_retries: int = Field(default=3, ge=1)


class TmdbConfig(BaseModel):
    api_key: str = ""


class WatchSyncConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    services: dict[str, ServiceConfig] = Field(default_factory=dict)
    resolution: ResolutionConfig = Field(default_factory=ResolutionConfig)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    tmdb: TmdbConfig = Field(default_factory=TmdbConfig)

    @model_validator(mode="after")
    def _preference_sources_enabled(self) -> "WatchSyncConfig":
        unknown = [s for s in self.services if s not in KNOWN_SERVICES]
        if unknown:
            raise ValueError(f"unknown services: {', '.join(sorted(unknown))}")
        for src in self.resolution.source_preference:
            if src not in KNOWN_SERVICES:
                raise ValueError(f"source_preference lists unknown source {src!r}")
            svc = self.services.get(src)
            if svc is None or not svc.enabled:
                raise ValueError(f"source_preference lists {src!r} which is not enabled")
        return self

    def enabled_services(self) -> list[str]:
        return sorted(name for name, svc in self.services.items() if svc.enabled)

    def policy(self) -> "ResolutionPolicy":
        return ResolutionPolicy.from_config(self.resolution)


class ResolutionPolicy(BaseModel):
    """Strategy per data type plus source ranking and time tolerance."""

    model_config = ConfigDict(frozen=True)

    strategy: Strategy = "preference"
    source_preference: tuple[str, ...] = KNOWN_SERVICES
    tolerance_seconds: int = 3600
    overrides: dict[str, Strategy] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, rc: ResolutionConfig) -> "ResolutionPolicy":
        overrides = {
            t: getattr(rc, f"{t}_strategy")
            for t in DATA_TYPES
            if getattr(rc, f"{t}_strategy", None)
        }
        return cls(
            strategy=rc.strategy,
            source_preference=tuple(rc.source_preference),
            tolerance_seconds=rc.tolerance_seconds,
            overrides=overrides,
        )

    def strategy_for(self, data_type: str) -> str:
        return self.overrides.get(data_type) or self.strategy

    def rank(self, source: str) -> tuple[int, str]:
        """Sort key: listed sources by position, unlisted after them by name."""
        try:
            return (self.source_preference.index(source), "")
        except ValueError:
            return (len(self.source_preference), source)


def validate_config(cfg: Mapping[str, Any]) -> WatchSyncConfig:
    try:
        return WatchSyncConfig.model_validate(dict(cfg or {}))
    except ValidationError as e:
        msgs = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'config'}: {err.get('msg')}"
            for err in e.errors()
        )
        raise ConfigurationError(msgs) from e


__all__ = [
    "Strategy", "KNOWN_SERVICES",
    "ServiceConfig", "ResolutionConfig", "SyncOptions", "RuntimeConfig", "TmdbConfig",
    "WatchSyncConfig", "ResolutionPolicy", "validate_config",
]
