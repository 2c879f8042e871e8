from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/bizops"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    SLOW_QUERY_THRESHOLD_MS: int = 500

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Segmentation
    SEGMENT_RECENCY_SENTINEL_DAYS: int = 999  # recency for customers who never purchased
    SEGMENT_RETENTION_WINDOW_DAYS: int = 90
    SEGMENT_CHURN_HORIZON_DAYS: int = 90
    SEGMENT_MAX_CLUSTERS: int = 20
    SEGMENT_KMEANS_MAX_ITER: int = 300
    SEGMENT_KMEANS_N_INIT: int = 10
    SEGMENT_KMEANS_RANDOM_STATE: int = 42
    SEGMENT_STRICT_RULE_OPERATORS: bool = True

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @field_validator('SEGMENT_MAX_CLUSTERS', 'SEGMENT_KMEANS_MAX_ITER', 'SEGMENT_KMEANS_N_INIT')
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in ("production", "staging")

    @property
    def sqlalchemy_echo(self) -> bool:
        """Never echo SQL (and its parameters) outside development."""
        return self.DEBUG and not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
