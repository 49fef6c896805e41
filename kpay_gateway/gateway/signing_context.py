from pydantic import BaseModel, ConfigDict

from kpay_gateway.gateway.params import ENGLISH_TOKEN
from kpay_gateway.settings import TEST_BASE_URL, Settings


class SigningContext(BaseModel):
    """Merchant credentials and gateway defaults shared read-only by every request.

    Built once by the hosting application and passed into each component, so
    several gateway configurations can coexist in one process.
    """

    model_config = ConfigDict(frozen=True)

    tranportal_id: str = ""
    tranportal_password: str = ""
    resource_key: str = ""
    base_url: str = TEST_BASE_URL
    response_url: str = ""
    error_url: str = ""
    currency: str = "414"
    language: str = ENGLISH_TOKEN
    action: str = "1"
    test_mode: bool = True
    sign_requests: bool = False
    http_timeout: float = 30.0
    kfast_enabled: bool = False
    apple_pay_enabled: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SigningContext":
        return cls(
            tranportal_id=settings.get_tranportal_id(),
            tranportal_password=settings.get_tranportal_password(),
            resource_key=settings.get_resource_key(),
            base_url=settings.get_base_url(),
            response_url=settings.get_response_url(),
            error_url=settings.get_error_url(),
            currency=settings.get_currency(),
            language=settings.get_language(),
            action=settings.get_action(),
            test_mode=settings.get_test_mode(),
            sign_requests=settings.get_sign_requests(),
            http_timeout=settings.get_http_timeout(),
            kfast_enabled=settings.get_kfast_enabled(),
            apple_pay_enabled=settings.get_apple_pay_enabled(),
        )

    def __repr__(self) -> str:
        # Never render secrets into logs or tracebacks.
        return (
            f"SigningContext(tranportal_id={self.tranportal_id!r}, base_url={self.base_url!r}, "
            f"test_mode={self.test_mode}, sign_requests={self.sign_requests})"
        )

    __str__ = __repr__
