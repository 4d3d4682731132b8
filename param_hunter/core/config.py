"""
Configuration management for Param Hunter using Pydantic settings.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AnomalyType, AttackLocation


class MiningConfig(BaseModel):
    """Settings snapshot for one mining session."""

    attack_type: AttackLocation = Field(
        default=AttackLocation.QUERY,
        description="Where candidate parameters are injected"
    )
    learn_requests_count: int = Field(
        default=6,
        description="Number of baseline probes sent while learning"
    )
    timeout: float = Field(default=15 * 60, ge=0, description="Discovery deadline in seconds")
    delay_between_requests: float = Field(default=0.02, ge=0, description="Delay in seconds")
    auto_detect_max_size: bool = True
    max_query_size: Optional[int] = None
    max_header_size: Optional[int] = None
    max_body_size: Optional[int] = None
    update_content_length: bool = True
    autopilot_enabled: bool = True
    waf_detection: bool = True
    additional_checks: bool = True
    performance_mode: bool = False
    extract_words_from_response: bool = True
    custom_value: Optional[str] = None
    max_parameters_amount: Optional[int] = Field(default=None, gt=0)
    ignore_anomaly_types: List[AnomalyType] = Field(default_factory=list)

    @field_validator("max_query_size", "max_header_size", "max_body_size")
    @classmethod
    def validate_max_size(cls, v):
        """Validate explicit size limits."""
        if v is not None and v <= 0:
            raise ValueError("Max size must be greater than 0")
        return v

    @model_validator(mode="after")
    def validate_learning_and_sizes(self):
        """Validate cross-field constraints."""
        if self.learn_requests_count < 3:
            raise ValueError("Learn requests count must be at least 3")
        if self.has_explicit_max_size() and self.auto_detect_max_size:
            raise ValueError("Cannot set both maxSize and autoDetectMaxSize")
        return self

    def has_explicit_max_size(self) -> bool:
        """Check if any explicit size limit is configured."""
        return any(
            size is not None
            for size in (self.max_query_size, self.max_header_size, self.max_body_size)
        )

    def explicit_max_size(self) -> Optional[int]:
        """Get the explicit size limit for the configured attack location."""
        return {
            AttackLocation.QUERY: self.max_query_size,
            AttackLocation.HEADERS: self.max_header_size,
            AttackLocation.BODY: self.max_body_size,
        }[self.attack_type]


class HTTPConfig(BaseModel):
    """Transport configuration settings."""

    timeout: float = Field(default=30.0, gt=0)
    verify_ssl: bool = False
    proxy_url: Optional[str] = None
    max_retries: int = Field(default=2, ge=0)
    backoff_factor: float = Field(default=0.3, ge=0)
    user_agent: Optional[str] = None


class Config(BaseSettings):
    """Main configuration class for Param Hunter."""

    app_name: str = "Param Hunter"
    debug: bool = False
    log_level: str = "INFO"

    mining: MiningConfig = Field(default_factory=MiningConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)

    model_config = SettingsConfigDict(
        env_prefix="PARAM_HUNTER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload the configuration from environment variables."""
    global _config
    _config = Config()
    return _config
