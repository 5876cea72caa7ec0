"""Configuration management for the Voting API service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "voting-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Storage backend: "postgres" or "memory"
    STORE_BACKEND: str = "postgres"

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"

    # Redis configuration
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # HTTP rate limiting
    RATE_LIMIT: str = "100000/second"

    # CORS settings
    CORS_ORIGINS: list = ["http://localhost:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 10
    POSTGRES_POOL_MAX_SIZE: int = 20

    # Institution encoding rules
    INSTITUTION_DOMAIN: str = "alhikmah.edu.ng"
    ENROLLMENT_YEARS: list = ["22", "23", "24"]
    DEPARTMENT_CODES: list = ["03cyb", "03sen", "03ins", "03cmp"]

    # Sessions
    SESSION_TTL_MINUTES: int = 120

    # Duplicate detection: device, network, browser or composite
    DETECTION_STRATEGY: str = "composite"

    # Ballots accepted per network address within the window (0 disables)
    VOTE_RATE_LIMIT: int = 200
    VOTE_RATE_WINDOW_SECONDS: int = 60

    # Optimistic transaction retries before surfacing a conflict
    TX_MAX_RETRIES: int = 5

    # JSON file with [{"id", "name", "position"}]; built-in roster when unset
    ROSTER_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        """Generate Redis connection URL."""
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


settings = Settings()
