"""Centralized configuration for the health scoring engine.

All fields can be set via ``HEALTHSCORE_*`` environment variables (e.g.
``HEALTHSCORE_DATABASE_URL=postgresql+psycopg://...``) or a ``.env`` file.
List and object fields take JSON values::

    HEALTHSCORE_STATUS_BUCKETS='[{"min_score": 90, "label": "Healthy"}]'

Manifesto:
    - **Pydantic validation:** Type-checked at startup, not at tick time
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box against a local SQLite file

Tags:
    settings, configuration, pydantic, environment

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from healthscore.core.models import ComparisonOperator


class StatusBucket(BaseModel):
    """Lower bound (inclusive) of a composite-score status label."""

    min_score: int = Field(ge=0, le=100)
    label: str


class SelectivePenalty(BaseModel):
    """Cross-category penalty applied during aggregation.

    When ``when_category``'s score satisfies ``operator value``, the
    contribution of ``target_category`` is multiplied by ``factor``.
    """

    when_category: str
    operator: ComparisonOperator = ComparisonOperator.EQ
    value: Decimal
    target_category: str
    factor: Decimal = Field(ge=0, le=1)


def _default_buckets() -> list[StatusBucket]:
    return [
        StatusBucket(min_score=85, label="Optimal"),
        StatusBucket(min_score=75, label="Warning"),
        StatusBucket(min_score=65, label="AtRisk"),
    ]


class HealthScoreSettings(BaseSettings):
    """Engine configuration.

    Fields
    ──────
    database_url         : SQLAlchemy URL for the persistence collaborator
    scheduler_tick_seconds : Beat interval of the timing backend
    status_buckets       : Descending score buckets for composite status labels
    snapshot_max_age_seconds : Older category snapshots count as not yet measured
    adapter              : ``module:attr`` import path of the metric source adapter
    """

    model_config = SettingsConfigDict(
        env_prefix="HEALTHSCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/healthscore.db")
    database_echo: bool = Field(default=False)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern="^(json|console)$")

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_tick_seconds: float = Field(default=10, gt=0)
    min_interval_seconds: int = Field(default=30, ge=1)

    # ── Collector defaults ───────────────────────────────────────
    default_timeout_seconds: int = Field(default=30, gt=0)
    default_parallel_degree: int = Field(default=5, ge=1)

    # ── Aggregation ──────────────────────────────────────────────
    global_cap: int = Field(default=100, ge=0, le=100)
    status_buckets: list[StatusBucket] = Field(default_factory=_default_buckets)
    default_status: str = Field(default="Critical")
    snapshot_max_age_seconds: int = Field(default=3600, gt=0)
    normalize_weights: bool = Field(default=False)
    selective_penalties: list[SelectivePenalty] = Field(default_factory=list)

    # ── Instance roster ──────────────────────────────────────────
    include_dmz: bool = Field(default=False)
    include_cloud: bool = Field(default=False)
    only_cloud: bool = Field(default=False)
    decommissioned_instances: list[str] = Field(default_factory=list)

    # ── Adapter ──────────────────────────────────────────────────
    adapter: str | None = Field(
        default=None,
        description="Import path of the metric source adapter (module:attr)",
    )

    @field_validator("status_buckets")
    @classmethod
    def _buckets_descending(cls, value: list[StatusBucket]) -> list[StatusBucket]:
        scores = [bucket.min_score for bucket in value]
        if scores != sorted(scores, reverse=True) or len(set(scores)) != len(scores):
            raise ValueError("status_buckets must have strictly descending min_score values")
        return value

    @model_validator(mode="after")
    def _cloud_filters(self) -> HealthScoreSettings:
        if self.only_cloud and not self.include_cloud:
            object.__setattr__(self, "include_cloud", True)
        return self


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, HealthScoreSettings] = {}


def get_settings(*, _force_reload: bool = False) -> HealthScoreSettings:
    """Load, validate, and cache a :class:`HealthScoreSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = HealthScoreSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (for testing)."""
    _settings_cache.clear()


__all__ = [
    "HealthScoreSettings",
    "SelectivePenalty",
    "StatusBucket",
    "clear_settings_cache",
    "get_settings",
]
