"""Tests for environment-driven settings."""

from checkout_service.app.config import Settings, load_settings
from checkout_service.app.database import make_engine
from checkout_service.app.main import build_notifier
from checkout_service.app.notifications import EventBusNotifier, LogNotifier


def test_defaults(monkeypatch):
    for name in ("RABBITMQ_HOST", "PESAPAL_IPN_ID", "LOG_JSON", "ORDER_MAX_RETRIES"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.rabbitmq_host is None
    assert settings.pesapal.ipn_id is None
    assert settings.pesapal.currency == "KES"
    assert settings.log_json is False
    assert settings.max_retries == 3


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://shop@db/checkout")
    monkeypatch.setenv("RABBITMQ_HOST", "broker")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("ORDER_MAX_RETRIES", "5")
    monkeypatch.setenv("PESAPAL_BASE_URL", "https://pay.pesapal.com/v3")
    monkeypatch.setenv("PESAPAL_IPN_ID", "ipn-77")
    monkeypatch.setenv("PESAPAL_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("EMAIL_FROM", "orders@shop.test")

    settings = load_settings()

    assert settings.database_url == "postgresql://shop@db/checkout"
    assert settings.rabbitmq_host == "broker"
    assert settings.log_json is True
    assert settings.max_retries == 5
    assert settings.pesapal.base_url == "https://pay.pesapal.com/v3"
    assert settings.pesapal.ipn_id == "ipn-77"
    assert settings.pesapal.timeout_seconds == 2.5
    assert settings.smtp.port == 2525
    assert settings.smtp.sender == "orders@shop.test"


def test_notifier_follows_broker_setting():
    assert isinstance(build_notifier(Settings()), LogNotifier)
    assert isinstance(build_notifier(Settings(rabbitmq_host="broker")), EventBusNotifier)


def test_in_memory_engine_shares_one_connection():
    engine = make_engine("sqlite://")
    with engine.connect() as first, engine.connect() as second:
        assert first.connection.dbapi_connection is second.connection.dbapi_connection
    engine.dispose()
