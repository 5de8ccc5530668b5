"""Engine configuration and feature flags."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings (all overridable through environment or .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scoring
    SCORING_MODE: str = "weighted"  # weighted | alert_centric
    SLA_BREACH_PENALTY: float = 0.0  # Points per breached alert in weighted mode

    # Ground truth extraction thresholds
    GROUND_TRUTH_MIN_THREAT_SCORE: int = 60
    PID_MIN_THREAT_SCORE: int = 80

    # SLA timer
    FEATURE_SLA_TIMER: bool = True
    SLA_WARNING_RATIO: float = 0.2  # Warning once remaining < 20% of the window
    SLA_TICK_SECONDS: float = 1.0

    # Alerts
    TICKET_PREFIX: str = "INC"

    # App
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: List[str] = ["*"]


# Global settings instance
settings = Settings()
