"""Configuration management for the Sentinel engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables.

    Every numeric threshold here is a tunable default, not a calibrated
    constant.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SENTINEL_",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
        env_parse_enums=True,
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_error_file_enabled: bool = Field(
        default=True, description="Enable separate error log file (WARNING+)"
    )
    log_file_prefix: str = Field(default="sentinel", description="Prefix for log file names")

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def error_log_file_path(self) -> str:
        """Get the error log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}_error.log"

    # Resource Monitor
    monitor_interval_seconds: float = Field(
        default=5.0, description="Seconds between resource samples"
    )
    monitor_high_water: float = Field(
        default=0.8, description="Memory/CPU fraction above which the engine conserves"
    )
    monitor_low_water: float = Field(
        default=0.5, description="Memory/CPU fraction below which full protection is allowed"
    )
    monitor_power_critical: float = Field(
        default=0.2, description="Remaining battery fraction treated as critically low"
    )
    monitor_upgrade_samples: int = Field(
        default=2, description="Consecutive favourable samples required before a tier upgrade"
    )

    # Tier budgets
    fast_ceiling_ms: float = Field(
        default=50.0, description="Hard latency ceiling per screening family (all tiers)"
    )
    deep_ceiling_full_ms: float = Field(
        default=500.0, description="Deep classification latency ceiling in full tier"
    )
    deep_ceiling_balanced_ms: float = Field(
        default=250.0, description="Deep classification latency ceiling in balanced tier"
    )
    deep_ceiling_conserving_ms: float = Field(
        default=100.0, description="Deep classification latency ceiling in conserving tier"
    )
    balanced_deep_families: int = Field(
        default=3, description="Maximum forwarded families classified in balanced tier"
    )
    conserving_penalty: float = Field(
        default=0.85, description="Confidence multiplier when the Deep tier is skipped"
    )
    degraded_penalty: float = Field(
        default=0.75, description="Confidence multiplier for verdicts without a Deep result"
    )

    # Deep classifier backend
    deep_backend: str = Field(
        default="heuristic", description="Deep classifier backend: heuristic or ollama"
    )
    ollama_host: str = Field(default="localhost", description="Ollama host")
    ollama_port: int = Field(default=11434, description="Ollama API port")
    ollama_model: str = Field(
        default="llama3.2:3b", description="Ollama model for deep classification"
    )
    ollama_timeout: float = Field(default=10.0, description="Ollama API timeout in seconds")

    # Pattern store and learning loop
    pattern_start_confidence: float = Field(
        default=0.7, description="Confidence assigned to a newly recorded signature"
    )
    pattern_reinforcement_step: float = Field(
        default=0.01, description="Confidence added per repeated detection"
    )
    pattern_max_confidence: float = Field(
        default=0.99, description="Upper bound for pattern confidence"
    )
    pattern_retention_days: float = Field(
        default=7.0, description="Days unseen before a pattern starts decaying"
    )
    pattern_decay_rate: float = Field(
        default=0.95, description="Confidence multiplier per overdue retention window"
    )
    pattern_floor: float = Field(
        default=0.3, description="Confidence below which a decaying pattern may be evicted"
    )
    pattern_grace_days: float = Field(
        default=28.0, description="Days unseen before a low-confidence pattern is evicted"
    )
    feedback_step: float = Field(
        default=0.25, description="Confidence removed from a pattern on false-positive feedback"
    )
    nudge_step: float = Field(
        default=0.05, description="Family sensitivity change per feedback record"
    )
    nudge_cap: float = Field(
        default=0.2, description="Maximum absolute family sensitivity nudge"
    )
    nudge_cooldown_hours: float = Field(
        default=24.0, description="Hours a sensitivity nudge stays in effect"
    )
    history_size: int = Field(
        default=1000, description="Recent detections kept for feedback and accuracy"
    )
    maintenance_interval_seconds: float = Field(
        default=3600.0, description="Seconds between decay/persistence maintenance cycles"
    )
    latency_budget_ms: float = Field(
        default=50.0, description="Average latency above which screening is tuned for speed"
    )
    accuracy_target: float = Field(
        default=0.92, description="Accuracy below which screening is tuned for recall"
    )

    # Persistence
    pattern_db_path: str | None = Field(
        default="data/patterns.db",
        description="SQLite file for the pattern store (empty for in-memory only)",
    )

    @field_validator(
        "monitor_high_water",
        "monitor_low_water",
        "monitor_power_critical",
        "conserving_penalty",
        "degraded_penalty",
        "pattern_start_confidence",
        "pattern_reinforcement_step",
        "pattern_max_confidence",
        "pattern_decay_rate",
        "pattern_floor",
        "feedback_step",
        "nudge_step",
        "nudge_cap",
        "accuracy_target",
    )
    @classmethod
    def validate_float_0_1(cls, v: float) -> float:
        """Validate float values are between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError(f"Value must be between 0 and 1, got: {v}")
        return v

    @field_validator("deep_backend")
    @classmethod
    def validate_deep_backend(cls, v: str) -> str:
        """Validate deep backend choice."""
        valid_backends = ["heuristic", "ollama"]
        if v not in valid_backends:
            raise ValueError(f"deep_backend must be one of {valid_backends}, got: {v}")
        return v

    @field_validator("monitor_upgrade_samples", "balanced_deep_families", "history_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts are at least 1."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_water_marks(self) -> Self:
        """Validate the monitor water marks and pattern bounds are consistent."""
        if self.monitor_low_water >= self.monitor_high_water:
            raise ValueError("monitor_low_water must be below monitor_high_water")
        if self.pattern_floor >= self.pattern_start_confidence:
            raise ValueError("pattern_floor must be below pattern_start_confidence")
        if self.pattern_start_confidence > self.pattern_max_confidence:
            raise ValueError("pattern_start_confidence must not exceed pattern_max_confidence")
        return self

    @property
    def ollama_url(self) -> str:
        """Get the full Ollama URL."""
        return f"http://{self.ollama_host}:{self.ollama_port}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
