import os
from typing import Optional

from pydantic import BaseModel


class PesapalConfig(BaseModel):
    """Connection settings for the Pesapal v3 API."""
    base_url: str = "https://cybqa.pesapal.com/pesapalv3"
    consumer_key: str = ""
    consumer_secret: str = ""
    callback_url: str = "http://localhost:8000/api/pesapal/callback"
    # When empty, the IPN URL is registered before every order submission.
    ipn_id: Optional[str] = None
    currency: str = "KES"
    timeout_seconds: float = 10.0
    success_status_code: int = 1


class SmtpConfig(BaseModel):
    host: str = "localhost"
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender: str = "no-reply@localhost"


class Settings(BaseModel):
    database_url: str = "sqlite:///./checkout.db"
    # Unset means notifications are only logged, not published.
    rabbitmq_host: Optional[str] = None
    rabbitmq_connect_attempts: int = 3
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_json: bool = False
    # Attempts for an order transaction that lost an optimistic version check.
    max_retries: int = 3
    pesapal: PesapalConfig = PesapalConfig()
    smtp: SmtpConfig = SmtpConfig()


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


def load_settings() -> Settings:
    """Builds the settings from environment variables."""
    env = os.environ
    defaults = Settings()
    pesapal = PesapalConfig(
        base_url=env.get("PESAPAL_BASE_URL", defaults.pesapal.base_url),
        consumer_key=env.get("PESAPAL_CONSUMER_KEY", ""),
        consumer_secret=env.get("PESAPAL_CONSUMER_SECRET", ""),
        callback_url=env.get("PESAPAL_CALLBACK_URL", defaults.pesapal.callback_url),
        ipn_id=env.get("PESAPAL_IPN_ID") or None,
        currency=env.get("PESAPAL_CURRENCY", defaults.pesapal.currency),
        timeout_seconds=float(env.get("PESAPAL_TIMEOUT_SECONDS", defaults.pesapal.timeout_seconds)),
    )
    smtp = SmtpConfig(
        host=env.get("SMTP_HOST", defaults.smtp.host),
        port=int(env.get("SMTP_PORT", defaults.smtp.port)),
        user=env.get("SMTP_USER") or None,
        password=env.get("SMTP_PASSWORD") or None,
        sender=env.get("EMAIL_FROM", defaults.smtp.sender),
    )
    return Settings(
        database_url=env.get("DATABASE_URL", defaults.database_url),
        rabbitmq_host=env.get("RABBITMQ_HOST") or None,
        frontend_url=env.get("FRONTEND_URL", defaults.frontend_url),
        log_level=env.get("LOG_LEVEL", defaults.log_level),
        log_json=_flag(env.get("LOG_JSON")),
        max_retries=int(env.get("ORDER_MAX_RETRIES", defaults.max_retries)),
        pesapal=pesapal,
        smtp=smtp,
    )
