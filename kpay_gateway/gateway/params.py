"""Parameter string construction for the KNET protocol.

Two different strings are derived from the same fields:

* the signing string: resource key followed by the non-empty values, sorted by
  key (case-insensitive), used for the SHA-256 hash on every message;
* the ordered plain string: ``key=value`` pairs in the fixed protocol order,
  empty values included, which is what gets encrypted into ``trandata``.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple
from urllib.parse import parse_qsl

from pydantic import BaseModel, ConfigDict, Field

from kpay_gateway.exceptions import InvalidFieldError

HASH_FIELD = "hash"

ENGLISH_TOKEN = "USA"
ARABIC_TOKEN = "ARA"

_ENGLISH_ALIASES = {"EN", "ENG", "ENGLISH", "US", "USA", "EN-US", "EN_US"}
_ARABIC_ALIASES = {"AR", "ARA", "ARABIC"}

_AMOUNT_QUANTUM = Decimal("0.001")

# Unordered signature input. Values may be None; those are skipped like empty strings.
SigningParams = Mapping[str, Optional[Any]]


def normalize_language(code: Optional[str], default: str = ENGLISH_TOKEN) -> str:
    """Rewrite a language code to the token the gateway expects (``USA`` for English)."""
    if code is None or not code.strip():
        code = default
    token = code.strip().upper()
    if token in _ENGLISH_ALIASES:
        return ENGLISH_TOKEN
    if token in _ARABIC_ALIASES:
        return ARABIC_TOKEN
    return token


def format_amount(value: Any) -> str:
    """Render an amount with exactly three fractional digits (e.g. ``10.500``)."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidFieldError("amt", f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidFieldError("amt", f"Invalid amount: {value!r}")
    return str(amount.quantize(_AMOUNT_QUANTUM, rounding=ROUND_HALF_UP))


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def build_signing_string(params: SigningParams, signing_key: str) -> str:
    """Builds the hash input: signing key + non-empty values in case-insensitive key order.

    The ``hash`` field itself is never part of its own input.
    """
    keys = sorted((k for k in params if k.lower() != HASH_FIELD), key=str.lower)
    parts = [signing_key or ""]
    for key in keys:
        value = params[key]
        if _is_blank(value):
            continue
        parts.append(str(value))
    return "".join(parts)


# (wire name, PaymentFields attribute) in the order the gateway parser reads them.
PAYMENT_FIELD_ORDER = (
    ("id", "id"),
    ("password", "password"),
    ("action", "action"),
    ("langid", "langid"),
    ("currencycode", "currencycode"),
    ("amt", "amt"),
    ("responseURL", "response_url"),
    ("errorURL", "error_url"),
    ("trackid", "trackid"),
    ("udf1", "udf1"),
    ("udf2", "udf2"),
    ("udf3", "udf3"),
    ("udf4", "udf4"),
    ("udf5", "udf5"),
)


class PaymentFields(BaseModel):
    """The payment-initiation fields in the order the gateway parser expects them."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    password: str = ""
    action: str = "1"
    langid: str = ENGLISH_TOKEN
    currencycode: str = "414"
    amt: str
    response_url: str = Field(alias="responseURL")
    error_url: str = Field(alias="errorURL")
    trackid: str
    udf1: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""

    def ordered_items(self) -> Iterator[Tuple[str, str]]:
        """Yields ``(wire_name, value)`` in protocol order, empty values included."""
        for wire_name, attr in PAYMENT_FIELD_ORDER:
            yield wire_name, getattr(self, attr)

    def to_signing_params(self) -> Dict[str, str]:
        return dict(self.ordered_items())


def build_ordered_plain_string(fields: PaymentFields) -> str:
    """Builds the ``&``-joined plaintext that gets encrypted into ``trandata``.

    Field position carries meaning to the gateway parser, so empty fields stay in.
    """
    return "&".join(f"{key}={value}" for key, value in fields.ordered_items())


def parse_query_string(text: str) -> Dict[str, str]:
    """Parses an ``&``-joined ``key=value`` string, keeping blank values.

    Later duplicates overwrite earlier ones.
    """
    pairs = parse_qsl(text.strip(), keep_blank_values=True)
    return {key.strip(): value for key, value in pairs if key.strip()}
