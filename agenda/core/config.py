from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuração da aplicação carregada do ambiente (ou de um .env)."""

    app_name: str = Field(default="Agenda Estúdio")
    database_url: str = Field(default="sqlite:///./agenda.db")

    # JWT da equipe
    secret_key: str = Field(default="dev-secret-change-me")
    access_token_expire_minutes: int = Field(default=30)

    # todas as comparações de relógio de parede acontecem nesse fuso
    business_timezone: str = Field(default="America/Sao_Paulo")

    mercadopago_access_token: str | None = Field(default=None)
    mercadopago_webhook_secret: str | None = Field(default=None)
    mercadopago_base_url: str = Field(default="https://api.mercadopago.com")
    gateway_timeout_seconds: float = Field(default=15.0)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("mercadopago_base_url", mode="before")
    def _strip_trailing_slash(cls, value):
        if isinstance(value, str):
            return value.rstrip("/")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna as configurações em cache."""

    return Settings()
