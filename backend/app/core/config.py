from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="development", validation_alias="APP_ENV")

    allow_public_register: bool = Field(default=False, validation_alias="ALLOW_PUBLIC_REGISTER")
    password_min_length: int = Field(default=8, validation_alias="PASSWORD_MIN_LENGTH")

    database_url: str = Field(
        default="sqlite+pysqlite:///./sitesafe.db",
        validation_alias="DATABASE_URL",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias="REDIS_URL",
    )

    jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    jwt_access_token_minutes: int = Field(default=60, validation_alias="JWT_ACCESS_TOKEN_MINUTES")
    jwt_issuer: str = Field(default="sitesafe", validation_alias="JWT_ISSUER")

    cors_allow_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOW_ORIGINS")
    cors_allow_methods: str = Field(default="*", validation_alias="CORS_ALLOW_METHODS")
    cors_allow_headers: str = Field(default="*", validation_alias="CORS_ALLOW_HEADERS")
    trust_proxy_headers: bool = Field(default=False, validation_alias="TRUST_PROXY_HEADERS")

    # Grading / attempts
    quiz_pass_points: int = Field(default=50, validation_alias="QUIZ_PASS_POINTS")
    quiz_time_grace_seconds: int = Field(default=30, validation_alias="QUIZ_TIME_GRACE_SECONDS")
    quiz_default_time_limit_minutes: int = Field(default=30, validation_alias="QUIZ_DEFAULT_TIME_LIMIT_MINUTES")

    # Attempt client
    api_base_url: str = Field(default="http://localhost:8000", validation_alias="LMS_API_BASE_URL")
    api_timeout_seconds: float = Field(default=15.0, validation_alias="LMS_API_TIMEOUT_SECONDS")
    progress_store: str = Field(default="file", validation_alias="PROGRESS_STORE")
    progress_dir: str = Field(default=".quiz_progress", validation_alias="PROGRESS_DIR")
    progress_ttl_seconds: int = Field(default=86400, validation_alias="PROGRESS_TTL_SECONDS")
    expired_progress_policy: str = Field(default="discard", validation_alias="EXPIRED_PROGRESS_POLICY")


settings = Settings()


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


if _is_prod():
    if not settings.jwt_secret_key or settings.jwt_secret_key.strip().lower() in {"change-me", "your-secret", "secret"}:
        raise RuntimeError("JWT_SECRET_KEY must be set to a strong value in production")
    if bool(settings.allow_public_register):
        raise RuntimeError("ALLOW_PUBLIC_REGISTER must be false in production")
    if settings.database_url.strip().startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production")
