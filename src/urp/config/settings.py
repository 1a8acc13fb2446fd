"""Configuration management using Pydantic Settings."""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Directories
    output_dir: Path = Field(Path("output"))

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")

    # Effect size derivation
    z_crit: float = Field(1.96, gt=0, description="Normal quantile of the reported 95% CI")

    # Pooling
    pooling_method: str = Field("random", pattern="^(random|fixed)$")
    tau2_method: str = Field("DL", pattern="^(DL|REML)$")
    prediction_level: float = Field(0.95, gt=0, lt=1)
    min_studies_pi: int = Field(3, ge=3)
    egger_min_studies: int = Field(3, ge=3)


# Instantiate global settings
settings = Settings()
