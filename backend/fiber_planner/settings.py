from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Validated settings (env-driven). Planning runs copy these into a PlanningConfig."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")

    # Graph construction
    dedup_tolerance: float = Field(default=0.5, ge=0.0, alias="DEDUP_TOLERANCE")
    fragmentation_warn_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        alias="FRAGMENTATION_WARN_RATIO",
    )
    coordinate_reference: Literal["planar", "wgs84"] = Field(
        default="planar",
        alias="COORDINATE_REFERENCE",
    )

    # Snapping / solving
    max_snap_radius: float = Field(default=250.0, ge=0.0, alias="MAX_SNAP_RADIUS")
    tie_epsilon: float = Field(default=1e-9, gt=0.0, alias="TIE_EPSILON")
    solver_concurrency: int = Field(default=8, ge=1, le=256, alias="SOLVER_CONCURRENCY")
    # 0 disables the run deadline.
    plan_timeout_s: float = Field(default=0.0, ge=0.0, alias="PLAN_TIMEOUT_S")


settings = Settings()
