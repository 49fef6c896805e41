import pytest

from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.settings import PRODUCTION_BASE_URL, TEST_BASE_URL, TEST_RESOURCE_KEY, Settings


def test_defaults():
    settings = Settings()
    assert settings.get_test_mode() is True
    assert settings.get_base_url() == TEST_BASE_URL
    assert settings.get_resource_key() == TEST_RESOURCE_KEY
    assert settings.get_currency() == "414"
    assert settings.get_language() == "USA"
    assert settings.get_action() == "1"
    assert settings.get_sign_requests() is False
    assert settings.get_http_timeout() == 30.0
    assert settings.get_response_url() == ""
    assert settings.get_create_tables() is False
    assert settings.get_kfast_enabled() is False
    assert settings.get_apple_pay_enabled() is False


def test_production_mode_switches_base_url_and_drops_test_key(monkeypatch):
    monkeypatch.setenv("KPAY_TEST_MODE", "false")
    settings = Settings()
    assert settings.get_base_url() == PRODUCTION_BASE_URL
    assert settings.get_resource_key() == ""


def test_explicit_base_url(monkeypatch):
    monkeypatch.setenv("KPAY_BASE_URL", "https://gateway.example.com/kpg/PaymentHTTP.htm/")
    assert Settings().get_base_url() == "https://gateway.example.com/kpg/PaymentHTTP.htm"


def test_invalid_base_url(monkeypatch):
    monkeypatch.setenv("KPAY_BASE_URL", "not a url")
    with pytest.raises(ValueError):
        Settings().get_base_url()


def test_callback_urls_derive_from_app_url(monkeypatch):
    monkeypatch.setenv("APP_URL", "https://shop.example.com/")
    settings = Settings()
    assert settings.get_response_url() == "https://shop.example.com/kpay/response"
    assert settings.get_error_url() == "https://shop.example.com/kpay/response"


def test_explicit_callback_urls_win(monkeypatch):
    monkeypatch.setenv("APP_URL", "https://shop.example.com")
    monkeypatch.setenv("KPAY_ERROR_URL", "https://shop.example.com/payment/failed")
    assert Settings().get_error_url() == "https://shop.example.com/payment/failed"


def test_invalid_timeout(monkeypatch):
    monkeypatch.setenv("KPAY_HTTP_TIMEOUT", "soon")
    with pytest.raises(ValueError):
        Settings().get_http_timeout()


def test_invalid_db_port(monkeypatch):
    monkeypatch.setenv("DB_PORT", "abc")
    with pytest.raises(ValueError):
        Settings().get_postgres_port()


def test_signing_context_from_settings(monkeypatch):
    monkeypatch.setenv("KPAY_TRANPORTAL_ID", "TP1")
    monkeypatch.setenv("KPAY_TRANPORTAL_PASSWORD", "pw")
    monkeypatch.setenv("KPAY_RESOURCE_KEY", "ABCDEFGHIJKLMNOP")
    monkeypatch.setenv("KPAY_SIGN_REQUESTS", "yes")
    monkeypatch.setenv("KPAY_KFAST_ENABLED", "true")
    monkeypatch.setenv("APP_URL", "https://shop.example.com")

    context = SigningContext.from_settings(Settings())

    assert context.tranportal_id == "TP1"
    assert context.resource_key == "ABCDEFGHIJKLMNOP"
    assert context.sign_requests is True
    assert context.kfast_enabled is True
    assert context.apple_pay_enabled is False
    assert context.response_url == "https://shop.example.com/kpay/response"
    assert "pw" not in repr(context)
    assert "ABCDEFGHIJKLMNOP" not in str(context)
