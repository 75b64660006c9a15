# telecare/config.py - configuration management
from dotenv import load_dotenv

load_dotenv()
import json
from functools import lru_cache
from typing import Dict, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PLAN_CREDITS = {"free_user": 0, "standard": 10, "premium": 24}


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "Telecare Scheduling Service"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: Optional[bool] = Field(default=None, alias="LOG_JSON")

    # Database
    database_url: str = Field(default="sqlite:///./telecare.db", alias="DATABASE_URL")
    database_pool_size: int = Field(default=20, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=30, alias="DATABASE_MAX_OVERFLOW")
    sqlite_busy_timeout: float = Field(default=30.0, alias="SQLITE_BUSY_TIMEOUT")

    # Identity provider tokens
    identity_jwt_secret: str = Field(default="change-me-change-me-change-me-change-me", alias="IDENTITY_JWT_SECRET")
    identity_jwt_algorithm: str = Field(default="HS256", alias="IDENTITY_JWT_ALGORITHM")
    identity_jwt_audience: Optional[str] = Field(default=None, alias="IDENTITY_JWT_AUDIENCE")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")

    # Credits
    appointment_cost: int = Field(default=2, alias="APPOINTMENT_COST")
    plan_credits: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_PLAN_CREDITS), alias="PLAN_CREDITS")
    credit_value_cents: int = Field(default=1000, alias="CREDIT_VALUE_CENTS")
    platform_fee_cents: int = Field(default=200, alias="PLATFORM_FEE_CENTS")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    booking_rate_limit: str = Field(default="5/minute", alias="BOOKING_RATE_LIMIT")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000"]
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("plan_credits", mode="before")
    @classmethod
    def parse_plan_credits(cls, v):
        if isinstance(v, str):
            v = json.loads(v)
        return v

    @field_validator("plan_credits")
    @classmethod
    def validate_plan_credits(cls, v):
        for plan, credits in v.items():
            if credits < 0:
                raise ValueError(f"Plan '{plan}' cannot grant negative credits")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("identity_jwt_secret")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("IDENTITY_JWT_SECRET must be at least 32 characters long")
        return v

    @field_validator("appointment_cost")
    @classmethod
    def validate_appointment_cost(cls, v):
        if v < 1:
            raise ValueError("APPOINTMENT_COST must be a positive number of credits")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.is_production


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Environment-specific configurations
class DevelopmentConfig(Settings):
    """Development environment configuration"""
    debug: bool = True
    environment: str = "development"


class ProductionConfig(Settings):
    """Production environment configuration"""
    debug: bool = False
    environment: str = "production"


class TestingConfig(Settings):
    """Testing environment configuration"""
    debug: bool = True
    environment: str = "testing"
    database_url: str = "sqlite:///./test.db"
    rate_limit_enabled: bool = False


def get_config_by_env(env: str, **overrides) -> Settings:
    """Get configuration by environment name"""
    configs = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
    }

    config_class = configs.get(env.lower(), Settings)
    return config_class(**overrides)
