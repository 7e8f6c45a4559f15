from typing import Dict, List, Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # ============================================================
    # APPLICATION INFO
    # ============================================================
    PROJECT_NAME: str = "Traveler Context Service"
    API_V1_STR: str = "/api/v1"
    VERSION: str = "1.0.0"
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # ============================================================
    # RECORD STORE
    # ============================================================
    RECORD_STORE_BACKEND: Literal["sql", "redis"] = "sql"
    RECORD_KEY_PREFIX: str = "usercontext"

    # ============================================================
    # DATABASE (SQLite locally, MySQL in production)
    # ============================================================
    DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: Optional[int] = 3306
    DB_NAME: Optional[str] = None
    SQLITE_PATH: str = "./user-data/traveler_context.db"

    @property
    def get_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if all([self.DB_USER, self.DB_PASSWORD, self.DB_HOST, self.DB_NAME]):
            return f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

        return f"sqlite+aiosqlite:///{self.SQLITE_PATH}"

    # ============================================================
    # REDIS (alternative record store backend)
    # ============================================================
    REDIS_URI: str = "redis://localhost:6379/0"
    REDIS_URL: Optional[str] = None  # alias

    @property
    def get_redis_url(self) -> str:
        return self.REDIS_URL or self.REDIS_URI

    # ============================================================
    # CONVERSATION CONTEXT
    # ============================================================
    CONVERSATION_WINDOW_SIZE: int = 50
    DEFAULT_RECENT_TURNS: int = 5

    # ============================================================
    # HISTORY & SUGGESTIONS
    # ============================================================
    DEFAULT_HISTORY_LIMIT: int = 10
    POPULAR_ROUTES_TOP_N: int = 5
    FREQUENT_ROUTES_LIMIT: int = 10
    BUDGET_BAND_K: float = 1.0

    # ============================================================
    # CURRENCY NORMALIZATION
    # ============================================================
    REFERENCE_CURRENCY: str = "USD"
    CURRENCY_CONVERTER: Literal["static", "http"] = "static"
    # Units of REFERENCE_CURRENCY per one unit of the keyed currency
    STATIC_EXCHANGE_RATES: Dict[str, float] = Field(
        default_factory=lambda: {"USD": 1.0, "EUR": 1.08, "GBP": 1.27, "CAD": 0.73}
    )
    EXCHANGE_RATE_PROVIDERS: List[str] = [
        "https://api.frankfurter.app/latest?from={base}",
        "https://open.er-api.com/v6/latest/{base}",
        "https://api.exchangerate-api.com/v4/latest/{base}",
    ]
    EXCHANGE_RATE_CACHE_TTL: int = 3600
    EXCHANGE_RATE_TIMEOUT: float = 5.0

    # ============================================================
    # LOGGING
    # ============================================================
    LOG_LEVEL: str = "INFO"

    # ============================================================
    # PYDANTIC CONFIG
    # ============================================================
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# ============================================================
# GLOBAL INSTANCE
# ============================================================
settings = Settings()
