"""
Pipeline configuration.

Loads config/pipeline.yaml into Pydantic models. Every section has defaults,
so an empty or missing file yields a usable configuration.
"""

from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from analytics_etl.core.errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config/pipeline.yaml")

DEFAULT_SOURCES = ["orders", "order_items", "products", "users", "inquiries"]


class LayerSettings(BaseModel):
    """Per-layer switches."""

    enabled: bool = True
    batch_size: int = Field(1000, gt=0)


class DateDimensionSettings(BaseModel):
    """Range of the generated date dimension."""

    start_date: date = date(2020, 1, 1)
    years_ahead: int = Field(2, ge=0)


class ETLSettings(BaseModel):
    """
    Orchestrator settings.

    Attributes:
        error_threshold: Max share of failed records before a run is marked failed
        aggregation_period: Default DWS aggregation period
        forecast_horizon: Number of periods forecast by the application layer
        stage_runner: "sequential" or "spark"
    """

    error_threshold: float = Field(0.05, ge=0.0, le=1.0)
    aggregation_period: str = "daily"
    forecast_horizon: int = Field(7, gt=0)
    stage_runner: str = "sequential"
    date_dimension: DateDimensionSettings = Field(default_factory=DateDimensionSettings)


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration."""

    layers: dict[str, LayerSettings] = Field(
        default_factory=lambda: {
            "ods": LayerSettings(batch_size=1000),
            "dwd": LayerSettings(batch_size=500),
            "dws": LayerSettings(batch_size=200),
            "ads": LayerSettings(batch_size=100),
        }
    )
    etl: ETLSettings = Field(default_factory=ETLSettings)
    sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES))
    exchange_rates: dict[str, float] = Field(default_factory=dict)
    validation_rules_path: str | None = None

    def layer(self, name: str) -> LayerSettings:
        """Settings for a layer, defaults when the layer is not configured."""
        return self.layers.get(name.lower(), LayerSettings())


def load_config(path: str | Path | None = None) -> PipelineConfig:
    """
    Load pipeline configuration from YAML.

    Args:
        path: Config file path (defaults to config/pipeline.yaml); a missing
            default file yields the built-in defaults

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigError: If an explicitly given file is missing or the content is invalid
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        if path:
            raise ConfigError(f"Pipeline configuration file not found: {config_path}")
        return PipelineConfig()

    try:
        with open(config_path) as f:
            raw: Any = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    try:
        return PipelineConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid pipeline configuration in {config_path}: {e}") from e
