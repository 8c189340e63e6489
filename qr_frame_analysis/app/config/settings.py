"""Configuration utilities for QR frame analysis."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models import ContourDetectionConfig, RectangleDetectionConfig


class AnalyzerSettings(BaseSettings):
    """Analyzer configuration sourced from environment variables, YAML or defaults."""

    model_config = SettingsConfigDict(env_prefix="QR_ANALYZER_", case_sensitive=False)

    cooldown_seconds: float = Field(default=0.2, ge=0.0, description="Minimum spacing between accepted frames.")
    rearm_cooldown: bool = Field(
        default=True,
        description="Restart the cooldown on every accepted frame. False keeps the legacy never-rearm behaviour.",
    )
    max_in_flight: Optional[int] = Field(default=1, ge=1, description="Concurrent analyses; None for unbounded.")
    process_every_n_frames: int = Field(default=1, ge=1)

    min_aspect_ratio: float = Field(default=0.85, gt=0.0)
    max_aspect_ratio: float = Field(default=1.15, gt=0.0)
    quadrature_tolerance: float = Field(default=0.1, ge=0.0, le=45.0, description="Degrees from a right angle.")
    minimum_rectangle_size: float = Field(default=0.1, ge=0.0, le=1.0)
    maximum_observations: int = Field(default=0, ge=0, description="0 means no limit.")

    contrast_adjustment: float = Field(default=2.0, gt=0.0)
    maximum_image_dimension: int = Field(default=500, ge=8)

    minimum_region_size: float = Field(default=0.1, ge=0.0, le=1.0)
    enable_quality_checks: bool = Field(default=False, description="Run the candidate quality policy.")
    blur_threshold: Optional[float] = Field(default=None, ge=0.0)

    log_format: str = Field(default="text")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"text", "json"}:
            raise ValueError(f"Unsupported log format: {value}")
        return value

    @model_validator(mode="after")
    def _check_aspect_window(self) -> "AnalyzerSettings":
        if self.min_aspect_ratio > self.max_aspect_ratio:
            raise ValueError("min_aspect_ratio must not exceed max_aspect_ratio")
        return self

    def rectangle_config(self) -> RectangleDetectionConfig:
        return RectangleDetectionConfig(
            minimum_aspect_ratio=self.min_aspect_ratio,
            maximum_aspect_ratio=self.max_aspect_ratio,
            quadrature_tolerance=self.quadrature_tolerance,
            minimum_size=self.minimum_rectangle_size,
            maximum_observations=self.maximum_observations,
        )

    def contour_config(self) -> ContourDetectionConfig:
        return ContourDetectionConfig(
            contrast_adjustment=self.contrast_adjustment,
            maximum_image_dimension=self.maximum_image_dimension,
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.expanduser().open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Analyzer config {path} must contain a mapping")
    return payload


def load_settings(config_path: Optional[Path] = None, **overrides: object) -> AnalyzerSettings:
    """Return analyzer settings, layering a YAML file and explicit overrides."""

    values: Dict[str, Any] = {}
    if config_path is not None:
        values.update(_read_yaml(Path(config_path)))
    values.update(overrides)
    return AnalyzerSettings(**values)
