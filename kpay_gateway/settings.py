import os
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

# Load .env file variables into environment
load_dotenv(verbose=True)

TEST_BASE_URL = "https://kpaytest.com.kw/kpg/PaymentHTTP.htm"
PRODUCTION_BASE_URL = "https://www.kpay.com.kw/kpg/PaymentHTTP.htm"

# The KNET test environment does not validate the resource key, but AES-128 still needs 16 bytes.
TEST_RESOURCE_KEY = "TEST_KEY_16_BYTE"

RESPONSE_PATH = "/kpay/response"

_TRUE_VALUES = ("true", "1", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


class Settings:
    """Application configuration settings loaded from environment variables."""

    # --- Gateway Settings ---
    KPAY_TRANPORTAL_ID: Optional[str] = None
    KPAY_TRANPORTAL_PASSWORD: Optional[str] = None
    KPAY_RESOURCE_KEY: Optional[str] = None
    KPAY_CURRENCY: str = "414"
    KPAY_LANGUAGE: str = "USA"

    # --- Database Settings ---
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_NAME: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: Optional[int] = 5432

    # --- Gateway getters ---
    def get_test_mode(self) -> bool:
        """Returns True unless KPAY_TEST_MODE is explicitly disabled."""
        return _env_bool("KPAY_TEST_MODE", True)

    def get_tranportal_id(self) -> str:
        return os.getenv("KPAY_TRANPORTAL_ID", "")

    def get_tranportal_password(self) -> str:
        return os.getenv("KPAY_TRANPORTAL_PASSWORD", "")

    def get_resource_key(self) -> str:
        """Returns the resource key, falling back to the gateway test key in test mode."""
        key = os.getenv("KPAY_RESOURCE_KEY", "")
        if not key and self.get_test_mode():
            return TEST_RESOURCE_KEY
        return key

    def get_base_url(self) -> str:
        """Returns the gateway endpoint, derived from the test mode flag if not set."""
        url = os.getenv("KPAY_BASE_URL", "").strip()
        if url:
            parsed = urlparse(url)
            if not all([parsed.scheme, parsed.netloc]):
                raise ValueError(f"Invalid KPAY_BASE_URL format: {url}")
            return url.rstrip("/")
        return TEST_BASE_URL if self.get_test_mode() else PRODUCTION_BASE_URL

    def get_app_url(self) -> Optional[str]:
        """Returns the public base URL of this application, if set."""
        url = os.getenv("APP_URL")
        return url.rstrip("/") if url else None

    def get_response_url(self) -> str:
        """Returns the response callback URL, derived from APP_URL when not set explicitly."""
        url = os.getenv("KPAY_RESPONSE_URL", "")
        if not url and self.get_app_url():
            return f"{self.get_app_url()}{RESPONSE_PATH}"
        return url

    def get_error_url(self) -> str:
        """Returns the error callback URL, derived from APP_URL when not set explicitly."""
        url = os.getenv("KPAY_ERROR_URL", "")
        if not url and self.get_app_url():
            return f"{self.get_app_url()}{RESPONSE_PATH}"
        return url

    def get_currency(self) -> str:
        return os.getenv("KPAY_CURRENCY", "414")

    def get_language(self) -> str:
        return os.getenv("KPAY_LANGUAGE", "USA")

    def get_action(self) -> str:
        return os.getenv("KPAY_ACTION", "1")

    def get_sign_requests(self) -> bool:
        """Whether outbound payment requests carry a hash field. Depends on the gateway deployment."""
        return _env_bool("KPAY_SIGN_REQUESTS", False)

    def get_http_timeout(self) -> float:
        """Returns the timeout (seconds) for refund and inquiry calls."""
        try:
            return float(os.getenv("KPAY_HTTP_TIMEOUT", "30"))
        except ValueError:
            raise ValueError("KPAY_HTTP_TIMEOUT environment variable must be a number.")

    def get_log_requests(self) -> bool:
        return _env_bool("KPAY_LOG_REQUESTS", True)

    def get_kfast_enabled(self) -> bool:
        """Whether KFAST (KNET saved-card checkout) is offered to customers."""
        return _env_bool("KPAY_KFAST_ENABLED", False)

    def get_apple_pay_enabled(self) -> bool:
        return _env_bool("KPAY_APPLE_PAY_ENABLED", False)

    # --- Database getters ---
    def get_database_url(self) -> Optional[str]:
        """Returns the primary DATABASE_URL, if set."""
        return os.getenv("DATABASE_URL")

    def get_postgres_user(self) -> str | None:
        return os.getenv("DB_USER")

    def get_postgres_password(self) -> str | None:
        return os.getenv("DB_PASSWORD")

    def get_postgres_db(self) -> str | None:
        return os.getenv("DB_NAME")

    def get_postgres_host(self) -> str | None:
        return os.getenv("DB_HOST")

    def get_postgres_port(self) -> int | None:
        """Returns the PostgreSQL port as an integer, or None if not set."""
        port_str = os.getenv("DB_PORT")
        if port_str is None:
            return None
        try:
            return int(port_str)
        except ValueError:
            raise ValueError("DB_PORT environment variable must be an integer.")

    def get_main_db_pool_min_size(self) -> int:
        """Returns the minimum pool size for the main DB."""
        try:
            return int(os.getenv("MAIN_DB_POOL_MIN_SIZE", "1"))
        except ValueError:
            raise ValueError("MAIN_DB_POOL_MIN_SIZE environment variable must be an integer.")

    def get_main_db_pool_max_size(self) -> int:
        """Returns the maximum pool size for the main DB."""
        try:
            return int(os.getenv("MAIN_DB_POOL_MAX_SIZE", "10"))
        except ValueError:
            raise ValueError("MAIN_DB_POOL_MAX_SIZE environment variable must be an integer.")

    def get_create_tables(self) -> bool:
        """Whether the app creates missing tables on startup."""
        return _env_bool("KPAY_CREATE_TABLES", False)

    # --- Logging Settings ---
    def get_log_level(self, default: str = "INFO") -> str:
        """Gets the configured log level, defaulting if not set."""
        return os.getenv("LOG_LEVEL", default).upper()

    # --- Server Settings ---
    def get_app_host(self) -> str:
        return os.getenv("KPAY_HOST", "0.0.0.0")

    def get_app_port(self) -> int:
        try:
            return int(os.getenv("KPAY_PORT", "8000"))
        except ValueError:
            raise ValueError("KPAY_PORT environment variable must be an integer.")

    def get_app_reload(self) -> bool:
        return _env_bool("KPAY_RELOAD", False)
