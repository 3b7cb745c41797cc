"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="TERRITORY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Territory Assignment Engine API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for static data files.")
    boundaries_dir: Path = Field(
        default=Path("data/boundaries"),
        description="Directory holding one GeoJSON FeatureCollection per granularity (plz-<granularity>.geojson).",
    )
    granularities: tuple[str, ...] = Field(
        default=("1digit", "2digit", "3digit", "5digit"),
        description="Granularities that may be loaded as boundary datasets.",
    )
    autosave_debounce_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Quiet period per layer before pending edits are written.",
    )
    undo_stack_depth: int = Field(default=100, ge=1, description="Maximum number of undoable changes kept per area.")
    change_log_limit: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of change records kept in an area's history.",
    )
    adjacency_epsilon: float = Field(
        default=0.001,
        gt=0.0,
        description="Padding (degrees) applied to bounding boxes when searching for neighbours.",
    )
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    osrm_max_retries: int = Field(default=3, ge=0)
    osrm_backoff_seconds: float = Field(default=1.0, ge=0.0)
    osrm_batch_size: int = Field(default=80, ge=1, description="Destinations per OSRM table request.")
    drive_time_road_factor: float = Field(
        default=1.25,
        ge=1.0,
        description="Road distance versus straight-line distance when OSRM is unavailable.",
    )
    drive_time_average_speed_kmh: float = Field(default=60.0, gt=0.0)
    persistence_backend: Literal["journal", "supabase"] = Field(
        default="journal",
        description="Where committed changes and snapshots are written.",
    )
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", "boundaries_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "granularities", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    def boundary_file(self, granularity: str) -> Path:
        return self.boundaries_dir / f"plz-{granularity}.geojson"


settings = Settings()
