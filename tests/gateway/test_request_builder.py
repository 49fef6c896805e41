import re
from decimal import Decimal
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from kpay_gateway.db.sqlmodel_models import TransactionStatus
from kpay_gateway.db.transaction_crud import get_transaction_by_track_id
from kpay_gateway.exceptions import ConfigurationError, InvalidFieldError
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import build_signing_string
from kpay_gateway.gateway.request_builder import (
    PaymentRequest,
    build_payment_request,
    generate_track_id,
    validate_callback_url,
    validate_credentials,
    validate_track_id,
)
from kpay_gateway.gateway.signing_context import SigningContext

CALLBACK_URL = "https://merchant.example.com/kpay/response"


def _query(endpoint: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlsplit(endpoint).query).items()}


@pytest.mark.asyncio
async def test_build_payment_request_encrypts_ordered_fields(async_session, signing_context):
    request = PaymentRequest(amount=Decimal("10.5"), track_id="ORDER-1", language="en")

    initiation = await build_payment_request(async_session, request, signing_context)

    assert initiation.track_id == "ORDER-1"
    assert initiation.endpoint.startswith(f"{signing_context.base_url}?trandata=")
    query = _query(initiation.endpoint)
    assert query["tranportalId"] == "TP100"
    assert query["responseURL"] == CALLBACK_URL
    assert query["errorURL"] == CALLBACK_URL
    assert "hash" not in query

    plain = crypto.decrypt(unquote(initiation.encrypted_payload), signing_context.resource_key)
    assert plain == (
        "id=TP100&password=secret-pass&action=1&langid=USA&currencycode=414&amt=10.500"
        f"&responseURL={CALLBACK_URL}&errorURL={CALLBACK_URL}"
        "&trackid=ORDER-1&udf1=&udf2=&udf3=&udf4=&udf5="
    )


@pytest.mark.asyncio
async def test_build_payment_request_persists_pending_transaction(async_session, signing_context):
    request = PaymentRequest(amount=Decimal("10.500"), track_id="ORDER-2", payment_method_code="KNET")

    initiation = await build_payment_request(async_session, request, signing_context)

    stored = await get_transaction_by_track_id(async_session, "ORDER-2")
    assert stored is not None
    assert stored.id == initiation.transaction.id
    assert stored.status == TransactionStatus.PENDING.value
    assert stored.amount == Decimal("10.500")
    assert stored.currency == "414"
    assert stored.payment_method == "KNET"
    assert stored.request_data["password"] == "***"
    assert stored.request_data["udf1"] == "KNET"


@pytest.mark.asyncio
async def test_resubmitting_same_track_id_reuses_transaction(async_session, signing_context):
    request = PaymentRequest(amount=Decimal("5"), track_id="ORDER-3")

    first = await build_payment_request(async_session, request, signing_context)
    second = await build_payment_request(async_session, request, signing_context)

    assert second.transaction.id == first.transaction.id


@pytest.mark.asyncio
async def test_generated_track_id_is_used_when_absent(async_session, signing_context):
    initiation = await build_payment_request(async_session, PaymentRequest(amount=Decimal("1")), signing_context)
    assert re.fullmatch(r"\d{16}", initiation.track_id)


@pytest.mark.asyncio
async def test_signed_requests_carry_hash(async_session, signing_context):
    context = signing_context.model_copy(update={"sign_requests": True})
    initiation = await build_payment_request(
        async_session, PaymentRequest(amount=Decimal("2"), track_id="SIGNED-1"), context
    )

    query = _query(initiation.endpoint)
    plain = crypto.decrypt(unquote(initiation.encrypted_payload), context.resource_key)
    fields = dict(pair.split("=", 1) for pair in plain.split("&"))
    assert query["hash"] == crypto.sign(build_signing_string(fields, context.resource_key))


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-1"])
async def test_non_positive_amount_is_rejected(async_session, signing_context, amount):
    with pytest.raises(InvalidFieldError):
        await build_payment_request(async_session, PaymentRequest(amount=Decimal(amount)), signing_context)


@pytest.mark.asyncio
async def test_bad_currency_is_rejected(async_session, signing_context):
    with pytest.raises(InvalidFieldError):
        await build_payment_request(
            async_session, PaymentRequest(amount=Decimal("1"), currency="KWD"), signing_context
        )


@pytest.mark.asyncio
async def test_missing_callback_url_is_configuration_error(async_session, signing_context):
    context = signing_context.model_copy(update={"response_url": "", "error_url": ""})
    with pytest.raises(ConfigurationError):
        await build_payment_request(async_session, PaymentRequest(amount=Decimal("1")), context)


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:8000/kpay/response",
        "https://shop.localhost/kpay/response",
        "http://127.0.0.1/kpay/response",
        "http://10.1.2.3/kpay/response",
        "http://192.168.0.5/kpay/response",
        "http://[::1]/kpay/response",
        "http://0.0.0.0/kpay/response",
        "http://localhost./cb",
        "http://127.1/cb",
        "http://2130706433/cb",
        "http://0x7f.0.0.1/cb",
        "/kpay/response",
        "ftp://merchant.example.com/kpay/response",
    ],
)
def test_unreachable_callback_urls_are_rejected(url):
    with pytest.raises(ConfigurationError):
        validate_callback_url(url, "responseURL")


def test_public_callback_url_is_accepted():
    assert validate_callback_url(f" {CALLBACK_URL} ", "responseURL") == CALLBACK_URL
    assert validate_callback_url("https://93.184.216.34/cb", "errorURL") == "https://93.184.216.34/cb"


def test_production_requires_credentials():
    context = SigningContext(test_mode=False, resource_key="TEST_KEY_16_BYTE")
    with pytest.raises(ConfigurationError) as exc_info:
        validate_credentials(context)
    assert "KPAY_TRANPORTAL_ID" in str(exc_info.value)
    assert "KPAY_TRANPORTAL_PASSWORD" in str(exc_info.value)


def test_resource_key_length_is_checked():
    with pytest.raises(ConfigurationError):
        validate_credentials(SigningContext(resource_key="too-short"))


def test_test_mode_allows_missing_tranportal_credentials():
    validate_credentials(SigningContext(resource_key="TEST_KEY_16_BYTE"))


def test_generate_track_id_shape():
    first = generate_track_id()
    assert re.fullmatch(r"\d{16}", first)
    assert len({generate_track_id() for _ in range(50)}) > 1


@pytest.mark.parametrize("track_id", ["", "has space", "x" * 41, "semi;colon"])
def test_invalid_track_ids(track_id):
    with pytest.raises(InvalidFieldError):
        validate_track_id(track_id)


def test_valid_track_id_is_trimmed():
    assert validate_track_id(" order_1-A ") == "order_1-A"
