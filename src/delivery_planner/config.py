"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DP_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Delivery Planner API"
    api_prefix: str = "/api"
    log_level: str = "INFO"
    data_root: Path = Field(default=Path("data"), description="Root directory for exported runs.")

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
    osrm_timeout_seconds: float = Field(default=30.0, gt=0.0)

    depot_code: str = Field(default="WAREHOUSE")
    depot_latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    depot_longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)

    two_opt_max_passes: int = Field(default=4, ge=0)
    average_speed_kmh: float = Field(default=40.0, gt=0.0)
    route_start_hour: int = Field(default=9, ge=0, le=23)
    stop_service_minutes: float = Field(default=5.0, ge=0.0)
    area_order: tuple[str, ...] = Field(
        default=("north", "east", "south", "west"),
        description="Display order for area breakdowns.",
    )
    reoptimize_per_driver: bool = Field(
        default=False,
        description="Re-run ordering inside each driver's stops instead of inheriting the global order.",
    )

    packing_quantity_pin_hash: Optional[str] = Field(
        default=None,
        description="SHA-256 hex digest of the PIN required for packing quantity edits.",
    )
    packing_idle_timeout_minutes: int = Field(default=30, ge=1)
    expiry_warning_days: int = Field(default=7, ge=0)
    low_stock_threshold: float = Field(default=0.0, ge=0.0)

    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )
    snapshot_table: str = "route_snapshots"
    export_snapshots: bool = False

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "area_order", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
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

    @property
    def depot_configured(self) -> bool:
        return self.depot_latitude is not None and self.depot_longitude is not None


settings = Settings()
