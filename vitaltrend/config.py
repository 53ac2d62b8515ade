"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical thresholds are data, loaded from a file rather than code
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from vitaltrend.domain.models import MetricDefinition, MetricThresholds

# Load environment variables from .env file
load_dotenv()


class AIProviderConfig(BaseModel):
    """Narrative generator configuration. No key means templated narratives only."""

    openai_api_key: str | None = Field(None, description="OpenAI API key (optional)")

    narrative_model: str = Field(
        default="openai:gpt-4o-mini", description="Model used for trend interpretation"
    )
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_tokens: int = Field(default=500, gt=0)
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Upper bound on a single narrative call"
    )
    max_retries: int = Field(default=1, ge=0)

    @field_validator("openai_api_key")
    def validate_api_key(cls, v):
        if not v:
            return None
        if not v.startswith("sk-"):
            raise ValueError("AI provider API key must start with 'sk-'")
        return v

    @property
    def narrative_enabled(self) -> bool:
        return self.openai_api_key is not None


class TrendConfig(BaseModel):
    """Trend pipeline tuning."""

    default_period_hours: float = Field(default=24.0, gt=0.0)
    max_period_hours: float = Field(default=720.0, gt=0.0, description="30 days")
    max_concurrent_metrics: int = Field(
        default=4, gt=0, description="Metrics processed concurrently within one batch"
    )

    # Narrative circuit breaker
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_recovery_seconds: float = Field(default=60.0, gt=0.0)

    tracked_metrics_path: str | None = Field(
        default=None, description="JSON file overriding the built-in metric table"
    )

    @model_validator(mode="after")
    def default_within_max(self) -> "TrendConfig":
        if self.default_period_hours > self.max_period_hours:
            raise ValueError("default_period_hours exceeds max_period_hours")
        return self


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")
    reload: bool = Field(default=False, description="Enable auto-reload for development")
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], description="Allowed origins for CORS"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    trends: TrendConfig = Field(default_factory=TrendConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


# Built-in tracked metrics. Bands follow common adult reference ranges.
DEFAULT_TRACKED_METRICS: list[MetricDefinition] = [
    MetricDefinition(
        metric_name="heartRate",
        display_name="Heart rate",
        unit="bpm",
        aliases=["heartRate", "heart_rate", "hr", "HR", "pulse", "Pulse"],
        thresholds=MetricThresholds(
            direction_slope=2.0,
            volatility_cv=0.15,
            urgent_slope=8.0,
            normal_low=60,
            normal_high=100,
            critical_low=40,
            critical_high=140,
        ),
    ),
    MetricDefinition(
        metric_name="temperature",
        display_name="Temperature",
        unit="°C",
        aliases=["temperature", "temp", "Temperature", "Temp", "body_temperature"],
        thresholds=MetricThresholds(
            direction_slope=0.1,
            volatility_cv=0.02,
            urgent_slope=0.5,
            normal_low=36.5,
            normal_high=37.5,
            critical_low=35,
            critical_high=39,
        ),
    ),
    MetricDefinition(
        metric_name="respiratoryRate",
        display_name="Respiratory rate",
        unit="/min",
        aliases=["respiratoryRate", "respiratory_rate", "rr", "RR", "breathing_rate"],
        thresholds=MetricThresholds(
            direction_slope=0.5,
            volatility_cv=0.2,
            urgent_slope=2.0,
            normal_low=12,
            normal_high=20,
            critical_low=8,
            critical_high=30,
        ),
    ),
    MetricDefinition(
        metric_name="oxygenSaturation",
        display_name="Oxygen saturation",
        unit="%",
        aliases=["oxygenSaturation", "oxygen_saturation", "spo2", "SpO2", "o2_sat", "o2sat"],
        thresholds=MetricThresholds(
            direction_slope=0.5,
            volatility_cv=0.03,
            urgent_slope=1.0,
            normal_low=95,
            normal_high=100,
            critical_low=90,
            adverse_direction="decreasing",
        ),
    ),
    MetricDefinition(
        metric_name="bloodPressureSystolic",
        display_name="Systolic blood pressure",
        unit="mmHg",
        aliases=["bloodPressureSystolic", "blood_pressure_systolic", "systolic", "sbp", "SBP"],
        thresholds=MetricThresholds(
            direction_slope=2.0,
            volatility_cv=0.12,
            urgent_slope=6.0,
            normal_low=90,
            normal_high=140,
            critical_low=80,
            critical_high=180,
        ),
    ),
    MetricDefinition(
        metric_name="bloodPressureDiastolic",
        display_name="Diastolic blood pressure",
        unit="mmHg",
        aliases=["bloodPressureDiastolic", "blood_pressure_diastolic", "diastolic", "dbp", "DBP"],
        thresholds=MetricThresholds(
            direction_slope=1.5,
            volatility_cv=0.12,
            urgent_slope=5.0,
            normal_low=60,
            normal_high=90,
            critical_low=50,
            critical_high=110,
        ),
    ),
    MetricDefinition(
        metric_name="painScore",
        display_name="Pain score",
        unit="/10",
        aliases=["painScore", "pain_score", "pain", "painLevel", "pain_level"],
        thresholds=MetricThresholds(
            direction_slope=0.3,
            volatility_cv=0.4,
            urgent_slope=1.0,
            normal_low=0,
            normal_high=3,
            critical_high=8,
            adverse_direction="increasing",
        ),
    ),
]

_metric_table_adapter = TypeAdapter(list[MetricDefinition])


def load_tracked_metrics(path: str | Path | None = None) -> list[MetricDefinition]:
    """Load the tracked metric table, falling back to the built-in defaults."""
    if path is None:
        return list(DEFAULT_TRACKED_METRICS)

    definitions = _metric_table_adapter.validate_json(Path(path).read_bytes())
    if not definitions:
        raise ValueError(f"Tracked metric table {path} is empty")

    names = [d.metric_name for d in definitions]
    if len(names) != len(set(names)):
        raise ValueError(f"Tracked metric table {path} has duplicate metric names")
    return definitions


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    ai_config = AIProviderConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        narrative_model=os.getenv("NARRATIVE_MODEL", "openai:gpt-4o-mini"),
        timeout_seconds=float(os.getenv("NARRATIVE_TIMEOUT_SECONDS", "10.0")),
    )

    trend_config = TrendConfig(
        default_period_hours=float(os.getenv("TREND_PERIOD_HOURS", "24")),
        max_period_hours=float(os.getenv("TREND_MAX_PERIOD_HOURS", "720")),
        max_concurrent_metrics=int(os.getenv("TREND_MAX_CONCURRENT_METRICS", "4")),
        tracked_metrics_path=os.getenv("TRACKED_METRICS_PATH") or None,
    )

    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=_parse_bool(os.getenv("API_RELOAD"), debug),
        allowed_origins=os.getenv("API_ALLOWED_ORIGINS", "http://localhost:3000").split(","),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        ai_provider=ai_config,
        trends=trend_config,
        api=api_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
