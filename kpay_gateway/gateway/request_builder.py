"""Assembly of the outbound payment-initiation request."""

import ipaddress
import re
import secrets
import socket
import time
from decimal import Decimal
from typing import Optional, Union
from urllib.parse import urlencode, urlparse

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.logging import MASK, log_gateway_message
from kpay_gateway.db.transaction_crud import create_or_reuse_pending
from kpay_gateway.exceptions import ConfigurationError, InvalidFieldError
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import (
    HASH_FIELD,
    PaymentFields,
    build_ordered_plain_string,
    build_signing_string,
    format_amount,
    normalize_language,
)
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.types import PaymentInitiation

TRACK_ID_MAX_LENGTH = 40
_TRACK_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,40}$")
_CURRENCY_PATTERN = re.compile(r"^\d{3}$")


class PaymentRequest(BaseModel):
    """Merchant input for one payment attempt. Unset values fall back to the signing context."""

    amount: Decimal
    track_id: Optional[str] = None
    currency: Optional[str] = None
    language: Optional[str] = None
    action: Optional[str] = None
    response_url: Optional[str] = None
    error_url: Optional[str] = None
    payment_method_code: Optional[str] = None
    udf1: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""


def generate_track_id() -> str:
    """Epoch seconds followed by six random digits: 16 digits, unique with high probability."""
    return f"{int(time.time())}{secrets.randbelow(900000) + 100000}"


def validate_track_id(track_id: str) -> str:
    track_id = track_id.strip()
    if not _TRACK_ID_PATTERN.match(track_id):
        raise InvalidFieldError(
            "trackid", f"Track ID must be 1-{TRACK_ID_MAX_LENGTH} characters of letters, digits, '-' or '_'"
        )
    return track_id


def _ip_literal(host: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    # Short and integer IPv4 spellings such as 127.1 or 2130706433 are addresses too.
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except (OSError, ValueError):
        return None


def validate_callback_url(url: Optional[str], name: str) -> str:
    """Ensures a callback URL is absolute and reachable from the public gateway."""
    if not url or not url.strip():
        raise ConfigurationError(f"{name} is required for KNET payments. Set APP_URL or configure it explicitly")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or not parsed.hostname:
        raise ConfigurationError(f"{name} must be a valid absolute URL (e.g. https://example.com/kpay/response)")

    host = parsed.hostname.lower().rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        raise ConfigurationError(f"{name} points at {host}, which the gateway cannot reach")
    address = _ip_literal(host)
    if address is None:
        return url
    if address.is_loopback or address.is_link_local or address.is_private or address.is_unspecified:
        raise ConfigurationError(f"{name} points at non-public address {host}, which the gateway cannot reach")
    return url


def validate_credentials(context: SigningContext) -> None:
    """Production mode requires the full credential set; test mode only needs a usable key."""
    if not context.test_mode:
        missing = [
            env_name
            for env_name, value in (
                ("KPAY_TRANPORTAL_ID", context.tranportal_id),
                ("KPAY_TRANPORTAL_PASSWORD", context.tranportal_password),
                ("KPAY_RESOURCE_KEY", context.resource_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing credentials required in production mode: {', '.join(missing)}")
    if len(context.resource_key.encode("utf-8")) != crypto.KEY_SIZE:
        raise ConfigurationError(f"KPAY_RESOURCE_KEY must be exactly {crypto.KEY_SIZE} bytes")


def build_payment_fields(request: PaymentRequest, context: SigningContext) -> PaymentFields:
    amount = format_amount(request.amount)
    if Decimal(amount) <= 0:
        raise InvalidFieldError("amt", "Payment amount must be greater than zero")

    currency = (request.currency or context.currency).strip()
    if not _CURRENCY_PATTERN.match(currency):
        raise InvalidFieldError("currencycode", f"Currency must be a 3-digit ISO 4217 code, got {currency!r}")

    track_id = validate_track_id(request.track_id) if request.track_id else generate_track_id()

    udf1 = request.udf1 or (request.payment_method_code or "")
    return PaymentFields(
        id=context.tranportal_id,
        password=context.tranportal_password,
        action=request.action or context.action,
        langid=normalize_language(request.language, default=context.language),
        currencycode=currency,
        amt=amount,
        response_url=validate_callback_url(request.response_url or context.response_url, "responseURL"),
        error_url=validate_callback_url(request.error_url or context.error_url, "errorURL"),
        trackid=track_id,
        udf1=udf1,
        udf2=request.udf2,
        udf3=request.udf3,
        udf4=request.udf4,
        udf5=request.udf5,
    )


def build_endpoint(
    context: SigningContext, fields: PaymentFields, encrypted_payload: str, signature: Optional[str]
) -> str:
    """Gateway URL carrying the encrypted payload plus the plaintext companion fields."""
    companions = {
        "tranportalId": fields.id,
        "responseURL": fields.response_url,
        "errorURL": fields.error_url,
    }
    if signature:
        companions[HASH_FIELD] = signature
    # trandata is already percent-encoded hex
    separator = "&" if "?" in context.base_url else "?"
    return f"{context.base_url}{separator}trandata={encrypted_payload}&{urlencode(companions)}"


async def build_payment_request(
    session: AsyncSession, request: PaymentRequest, context: SigningContext
) -> PaymentInitiation:
    """Validate, encrypt and persist a payment-initiation request.

    The pending transaction is committed before this returns, so the gateway's
    callbacks can always find it.

    Raises:
        ConfigurationError: Missing production credentials, bad key, bad callback URLs
        InvalidFieldError: Bad amount, currency or caller-supplied track ID
        CryptoError: If encryption fails
    """
    validate_credentials(context)
    fields = build_payment_fields(request, context)

    plain = build_ordered_plain_string(fields)
    encrypted_payload = crypto.encrypt(plain, context.resource_key)

    signature = None
    if context.sign_requests:
        signature = crypto.sign(build_signing_string(fields.to_signing_params(), context.resource_key))

    endpoint = build_endpoint(context, fields, encrypted_payload, signature)

    snapshot = fields.to_signing_params()
    if snapshot.get("password"):
        snapshot["password"] = MASK
    if signature:
        snapshot[HASH_FIELD] = signature

    transaction = await create_or_reuse_pending(
        session,
        track_id=fields.trackid,
        amount=Decimal(fields.amt),
        currency=fields.currencycode,
        request_snapshot=snapshot,
        payment_method=request.payment_method_code,
    )

    log_gateway_message("outbound", "payment", snapshot, track_id=fields.trackid, transaction_id=transaction.id)
    return PaymentInitiation(
        endpoint=endpoint,
        encrypted_payload=encrypted_payload,
        transaction=transaction,
        track_id=fields.trackid,
    )
