from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from typing import Optional


class Settings(BaseSettings):
    """Application configuration using Pydantic v2 settings.

    - Parses comma-separated CORS origins into a list
    - Reads environment from APP_ENV or ENVIRONMENT
    - App-level LLM keys are used when a user has not stored their own
    - Ignores unknown env keys
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "ARES Console API"
    environment: str = Field(default="dev", validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL"))

    # CORS (comma-separated string)
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias=AliasChoices("CORS_ORIGIN", "CORS_ORIGINS"),
    )

    # Secrets (Fernet key is derived from this)
    secret_key: str = Field(default="AresSecretKey")

    # Metadata store (SQLite)
    metadata_db_path: str = Field(default=".data/ares.sqlite")

    # LLM providers
    openai_api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("OPENAI_API_KEY"))
    gemini_api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("GEMINI_API_KEY"))
    openai_model: str = Field(default="gpt-4o-mini", validation_alias=AliasChoices("OPENAI_MODEL"))
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias=AliasChoices("GEMINI_MODEL"))
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias=AliasChoices("OPENAI_BASE_URL"))
    ai_timeout_seconds: int = Field(default=30, validation_alias=AliasChoices("AI_TIMEOUT_SECONDS"))
    ai_concurrency: int = Field(default=2, validation_alias=AliasChoices("AI_CONCURRENCY"))

    # Token buckets per license tier
    free_token_limit: int = Field(default=20000, validation_alias=AliasChoices("FREE_TOKEN_LIMIT"))
    individual_token_limit: int = Field(default=200000, validation_alias=AliasChoices("INDIVIDUAL_TOKEN_LIMIT"))
    business_token_limit: int = Field(default=1000000, validation_alias=AliasChoices("BUSINESS_TOKEN_LIMIT"))
    token_bucket_days: int = Field(default=30)

    # Knowledge quality gate for business accounts
    quality_threshold: int = Field(default=80)
    individual_pod_limit: int = Field(default=2)

    # Hard cap on rows returned by any connector
    query_max_rows: int = Field(default=5000, validation_alias=AliasChoices("QUERY_MAX_ROWS"))

    # Admin bootstrap on startup
    admin_email: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_EMAIL"))
    admin_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_NAME"))
    admin_org: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_ORG"))

    @property
    def cors_origins_list(self) -> list[str]:
        return [x.strip() for x in str(self.cors_origins).split(",") if x.strip()]

    @property
    def ai_timeout(self) -> int:
        return max(5, int(self.ai_timeout_seconds or 30))

    @property
    def ai_limit(self) -> int:
        return max(1, int(self.ai_concurrency or 1))


settings = Settings()
