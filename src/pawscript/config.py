"""
PawScript Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Analytics engine settings."""
    
    model_config = SettingsConfigDict(
        env_prefix="PAWSCRIPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
    
    # Application
    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = False
    
    # Date-only fields and HH:MM times are local to the clinic
    clinic_timezone: str = "UTC"
    
    # Default windows (days)
    adherence_window_days: int = Field(default=30, ge=0)
    symptom_window_days: int = Field(default=30, ge=0)
    overall_window_days: int = Field(default=90, ge=0)
    recent_window_days: int = Field(default=30, ge=0)
    symptom_flag_window_days: int = Field(default=14, ge=0)
    
    @field_validator("clinic_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {value!r}") from e
        return value
    
    @property
    def tz(self) -> ZoneInfo:
        """Clinic timezone as a tzinfo."""
        return ZoneInfo(self.clinic_timezone)


@lru_cache()
def get_settings() -> EngineSettings:
    """
    Get cached settings instance.
    
    Returns:
        EngineSettings: The engine settings
    """
    return EngineSettings()
