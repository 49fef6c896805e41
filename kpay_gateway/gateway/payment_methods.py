"""Catalogue of the payment methods offered at checkout."""

from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from kpay_gateway.gateway.signing_context import SigningContext

PLATFORMS = ("web", "ios", "android")


class PaymentMethod(BaseModel):
    """A payment method the customer can pick. ``code`` travels to the gateway in ``udf1``."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    platforms: Tuple[str, ...] = PLATFORMS

    def supports(self, platform: str) -> bool:
        return platform.strip().lower() in self.platforms


STANDARD_METHODS = (
    PaymentMethod(code="KNET", name="KNET Card"),
    PaymentMethod(code="VISA", name="Visa"),
    PaymentMethod(code="MASTERCARD", name="Mastercard"),
)
KFAST = PaymentMethod(code="KFAST", name="KFAST")
APPLE_PAY = PaymentMethod(code="APPLE_PAY", name="Apple Pay", platforms=("ios", "web"))


def get_payment_methods(platform: str, context: SigningContext) -> List[PaymentMethod]:
    """Methods available on ``platform`` (web, ios or android), in display order.

    KNET, Visa and Mastercard are always offered. KFAST and Apple Pay follow
    the merchant's toggles. An unknown platform matches nothing.
    """
    methods = list(STANDARD_METHODS)
    if context.kfast_enabled:
        methods.append(KFAST)
    if context.apple_pay_enabled:
        methods.append(APPLE_PAY)
    return [method for method in methods if method.supports(platform)]
