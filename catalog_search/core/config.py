from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "catalog-search"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    DATABASE_URL: str

    # Server-side filter execution
    FILTER_DEFAULT_PER_PAGE: int = 10
    FILTER_MAX_PER_PAGE: int = 1000
    FILTER_DIAGNOSTICS_ENABLED: bool = True

    # Client-side facet loading
    FACET_API_BASE_URL: str = "http://localhost:8000"
    FACET_API_PREFIX: str = "/api/v1"
    FACET_HTTP_TIMEOUT_SECONDS: float = 10.0
    FACET_DEBOUNCE_MS: int = 300
    FACET_CACHE_TTL_SECONDS: int = 300
    FACET_SEARCH_PER_PAGE: int = 50
    FACET_INITIAL_PER_PAGE: int = 1000

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
