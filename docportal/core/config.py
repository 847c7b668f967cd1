import ssl
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="development", alias="APP_ENV")

    database_url: str = Field(alias="DATABASE_URL")

    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_algo: str = Field(default="HS256", alias="JWT_ALGO")
    access_min: int = Field(default=60, alias="ACCESS_MIN", ge=1)

    app_base_url: str = Field(alias="APP_BASE_URL")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        alias="CORS_ORIGINS",
    )

    invitation_ttl_days: int = Field(default=7, alias="INVITATION_TTL_DAYS", ge=1)
    password_reset_ttl_minutes: int = Field(
        default=60, alias="PASSWORD_RESET_TTL_MINUTES", ge=1
    )
    password_min_length: int = Field(default=8, alias="PASSWORD_MIN_LENGTH", ge=6)

    notification_backend: str = Field(default="log", alias="NOTIFICATION_BACKEND")
    smtp_host: str = Field(default="smtp.azurecomm.net", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    mail_from: str | None = Field(default=None, alias="MAIL_FROM")
    mail_from_name: str = Field(default="DataCop", alias="MAIL_FROM_NAME")

    bootstrap_admin_email: str | None = Field(default=None, alias="BOOTSTRAP_ADMIN_EMAIL")
    bootstrap_admin_password: str | None = Field(
        default=None, alias="BOOTSTRAP_ADMIN_PASSWORD"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore


def get_smtp_ctx() -> ssl.SSLContext:
    return ssl.create_default_context()
