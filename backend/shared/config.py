"""
Central configuration for the match tracker.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[1] / "data"


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared by the tracker, feeds and scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="MT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound into every log line")

    # ── Data files ───────────────────────────────────────────
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Roster, overrides and caches; MT_DATA_DIR overrides")
    roster_file: str = "players.json"
    next_game_cache_file: str = "nextGamesCache.json"
    secondary_cache_file: str = "fotmobCache.json"
    manual_overrides_file: str = "playerStats.json"

    # ── Feeds ────────────────────────────────────────────────
    football_data_api_key: str = ""
    football_data_base_url: str = "https://api.football-data.org/v4"
    fotmob_base_url: str = "https://www.fotmob.com"
    fotmob_enabled: bool = True
    provider_request_timeout_s: float = 10.0
    provider_max_retries: int = 2
    football_data_rpm_limit: int = 10
    fotmob_rpm_limit: int = 60
    inter_request_delay_s: float = Field(default=0.1, description="Pause between dependent per-team requests")

    # ── Circuit breaker ──────────────────────────────────────
    circuit_failure_threshold: int = 5
    circuit_recovery_s: float = 120.0

    # ── Cache TTLs ───────────────────────────────────────────
    primary_cache_ttl_s: float = 300.0
    secondary_cache_ttl_s: float = 3600.0
    secondary_live_cache_ttl_s: float = 45.0

    # ── Scheduler ────────────────────────────────────────────
    scheduler_live_interval_s: float = 60.0
    scheduler_idle_interval_s: float = 300.0
    scheduler_slow_refresh_s: float = Field(default=1800.0, description="Re-derive last/next games at this interval")

    # ── Reconciliation windows ───────────────────────────────
    last_game_lookback_days: int = 10
    next_game_lookahead_days: int = 14
    recent_detail_window_h: float = 48.0
    match_duration_min: int = 90
    player_history_limit: int = 5

    # ── Calendar ─────────────────────────────────────────────
    default_timezone: str = "Europe/London"
    league_timezones: dict[str, str] = Field(
        default={
            "Premier League": "Europe/London",
            "Championship": "Europe/London",
            "Scottish Premiership": "Europe/London",
            "Serie A": "Europe/Rome",
            "Bundesliga": "Europe/Berlin",
            "2. Bundesliga": "Europe/Berlin",
            "La Liga": "Europe/Madrid",
            "Ligue 1": "Europe/Paris",
            "Eredivisie": "Europe/Amsterdam",
            "Belgian Pro League": "Europe/Brussels",
            "MLS": "America/New_York",
            "Liga MX": "America/Mexico_City",
        }
    )

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = False
    metrics_port: int = 9090

    @property
    def demo_mode(self) -> bool:
        """No primary-feed credentials: run on offline sample data."""
        return not self.football_data_api_key

    def data_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
