import pytest

from kpay_gateway.exceptions import InvalidFieldError
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import (
    PaymentFields,
    build_ordered_plain_string,
    build_signing_string,
    format_amount,
    normalize_language,
    parse_query_string,
)


def _fields(**overrides) -> PaymentFields:
    values = dict(
        id="TP100",
        password="pw",
        amt="10.500",
        responseURL="https://merchant.example.com/ok",
        errorURL="https://merchant.example.com/err",
        trackid="T1",
    )
    values.update(overrides)
    return PaymentFields(**values)


def test_signing_string_sorts_keys_case_insensitively_and_skips_hash():
    params = {
        "trackid": "123",
        "amt": "10.500",
        "Result": "CAPTURED",
        "hash": "SHOULD-NOT-APPEAR",
        "paymentid": "P1",
    }
    assert build_signing_string(params, "K") == "K10.500P1CAPTURED123"


def test_signature_does_not_depend_on_key_order_or_case():
    params = {
        "paymentid": "P1",
        "result": "CAPTURED",
        "auth": "A1",
        "trackid": "T1",
        "amt": "10.500",
        "udf1": "",
        "hash": "IGNORED",
    }
    reversed_params = dict(reversed(list(params.items())))
    shuffled_params = {key: params[key] for key in ("amt", "hash", "trackid", "paymentid", "udf1", "auth", "result")}
    mixed_case = {
        "PaymentID": "P1",
        "RESULT": "CAPTURED",
        "Auth": "A1",
        "TrackId": "T1",
        "AMT": "10.500",
        "Hash": "X",
    }

    expected = crypto.sign(build_signing_string(params, "K"))
    for variant in (reversed_params, shuffled_params, mixed_case):
        assert crypto.sign(build_signing_string(variant, "K")) == expected


def test_signing_string_skips_empty_and_none_values():
    params = {"a": "1", "b": "", "c": None, "d": "   ", "e": "5"}
    assert build_signing_string(params, "KEY") == "KEY15"


def test_signing_string_keeps_value_whitespace():
    assert build_signing_string({"a": " x "}, "K") == "K x "


def test_signing_string_with_only_blank_values_is_the_key():
    assert build_signing_string({"udf1": "", "hash": "abc"}, "K") == "K"


def test_ordered_plain_string_keeps_protocol_order_and_empty_fields():
    plain = build_ordered_plain_string(_fields(udf2="gift"))
    assert plain == (
        "id=TP100&password=pw&action=1&langid=USA&currencycode=414&amt=10.500"
        "&responseURL=https://merchant.example.com/ok&errorURL=https://merchant.example.com/err"
        "&trackid=T1&udf1=&udf2=gift&udf3=&udf4=&udf5="
    )


def test_payment_fields_accept_attribute_names():
    fields = PaymentFields(
        amt="1.000", response_url="https://a.example.com", error_url="https://b.example.com", trackid="T2"
    )
    assert fields.to_signing_params()["responseURL"] == "https://a.example.com"
    assert fields.to_signing_params()["errorURL"] == "https://b.example.com"


@pytest.mark.parametrize(
    "code, expected",
    [
        ("en", "USA"),
        ("English", "USA"),
        ("usa", "USA"),
        ("ar", "ARA"),
        ("ARABIC", "ARA"),
        (None, "USA"),
        ("", "USA"),
    ],
)
def test_normalize_language(code, expected):
    assert normalize_language(code) == expected


def test_normalize_language_uses_given_default():
    assert normalize_language(None, default="ar") == "ARA"


@pytest.mark.parametrize(
    "value, expected",
    [("10.5", "10.500"), (10, "10.000"), ("0.0005", "0.001"), ("3.14159", "3.142")],
)
def test_format_amount_uses_three_decimals(value, expected):
    assert format_amount(value) == expected


@pytest.mark.parametrize("value", ["abc", "-1", "NaN", ""])
def test_format_amount_rejects_invalid_values(value):
    with pytest.raises(InvalidFieldError) as exc_info:
        format_amount(value)
    assert exc_info.value.field_name == "amt"


def test_parse_query_string_decodes_and_keeps_blank_values():
    parsed = parse_query_string("paymentid=P1&result=NOT+CAPTURED&udf1=&errortext=a%26b")
    assert parsed == {"paymentid": "P1", "result": "NOT CAPTURED", "udf1": "", "errortext": "a&b"}


def test_parse_query_string_ignores_empty_pairs():
    assert parse_query_string("&a=1&&b=2&") == {"a": "1", "b": "2"}
