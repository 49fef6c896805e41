"""Inbound gateway messages: normalization, verification, classification and persistence.

Two channels deliver results for the same track ID, in no guaranteed order:

* the browser redirect, carrying plaintext fields in the query string or form;
* the server-to-server callback, a raw POST body holding the hex ciphertext of
  the same fields. The gateway expects ``REDIRECT=<url>`` back and forwards the
  customer there, so that reply always points at the plaintext endpoint.
"""

import enum
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.events import PaymentNotifier, PaymentStatusUpdated
from kpay_gateway.core.logging import log_gateway_message
from kpay_gateway.db.sqlmodel_models import Transaction, TransactionStatus
from kpay_gateway.db.transaction_crud import apply_verified_response
from kpay_gateway.exceptions import (
    ConfigurationError,
    CryptoError,
    InvalidSignatureError,
    KPayException,
    MissingFieldError,
)
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import HASH_FIELD, build_signing_string, parse_query_string
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.types import CallbackKind, CallbackOutcome, ClassifiedResponse

logger = logging.getLogger(__name__)

TRACK_ID_FIELD = "trackid"
RESULT_FIELD = "result"
ERROR_FIELD = "error"

SUCCESS_RESULTS = frozenset({"CAPTURED", "SUCCESS"})
FAILURE_RESULTS = frozenset(
    {"NOT CAPTURED", "NOTCAPTURED", "FAILED", "CANCELLED", "CANCELED", "DENIED BY RISK", "HOST TIMEOUT"}
)

# Any one of these marks a request as a real plaintext callback rather than a probe.
_CALLBACK_MARKERS = (TRACK_ID_FIELD, "paymentid", RESULT_FIELD, HASH_FIELD)


class Channel(str, enum.Enum):
    ENCRYPTED = "server"
    PLAINTEXT = "redirect"
    PROBE = "probe"


def normalize_keys(fields: Mapping[str, Any]) -> Dict[str, str]:
    """Lower-cases field names; the gateway sends ``TrackID``, ``trackid`` or ``trackId`` depending on version."""
    normalized: Dict[str, str] = {}
    for key, value in fields.items():
        normalized[str(key).strip().lower()] = "" if value is None else str(value)
    return normalized


def detect_channel(method: str, body: Optional[bytes], fields: Mapping[str, Any]) -> Channel:
    """Classify an inbound request by where its data lives."""
    normalized = normalize_keys(fields)
    is_post_with_body = method.upper() == "POST" and bool(body and body.strip())
    if is_post_with_body and normalized.get("trandata"):
        return Channel.ENCRYPTED
    if any(marker in normalized for marker in _CALLBACK_MARKERS):
        return Channel.PLAINTEXT
    if is_post_with_body:
        return Channel.ENCRYPTED
    return Channel.PROBE


def verify_response(fields: Mapping[str, str], context: SigningContext) -> str:
    """Checks the ``hash`` of normalized response fields and returns the track ID.

    Raises:
        MissingFieldError: If ``trackid`` is absent or empty
        InvalidSignatureError: If ``hash`` is missing or does not match
    """
    track_id = (fields.get(TRACK_ID_FIELD) or "").strip()
    if not track_id:
        raise MissingFieldError(TRACK_ID_FIELD, "Track ID not found in gateway response")

    expected = crypto.sign(build_signing_string(fields, context.resource_key))
    if not crypto.verify(fields.get(HASH_FIELD), expected):
        raise InvalidSignatureError(f"Invalid response hash for track_id '{track_id}'")
    return track_id


def classify_result(fields: Mapping[str, str]) -> TransactionStatus:
    result = (fields.get(RESULT_FIELD) or "").strip().upper()
    if result in SUCCESS_RESULTS:
        return TransactionStatus.SUCCESS
    if result in FAILURE_RESULTS:
        return TransactionStatus.FAILED
    if (fields.get(ERROR_FIELD) or "").strip():
        return TransactionStatus.FAILED
    return TransactionStatus.PENDING


def classify_response(fields: Mapping[str, Any], context: SigningContext) -> ClassifiedResponse:
    """Normalize, verify and classify a gateway message without touching storage."""
    normalized = normalize_keys(fields)
    track_id = verify_response(normalized, context)
    return ClassifiedResponse(track_id=track_id, status=classify_result(normalized), fields=normalized)


async def apply_response(
    session: AsyncSession,
    fields: Mapping[str, Any],
    context: SigningContext,
    notifier: Optional[PaymentNotifier] = None,
    channel: str = Channel.PLAINTEXT.value,
) -> Transaction:
    """Verify, classify and persist one gateway message, then notify listeners.

    Nothing is written unless the signature checks out. Listeners are not
    notified when the stored transaction ignored the message.

    Raises:
        MissingFieldError, InvalidSignatureError, NotFoundError
    """
    classified = classify_response(fields, context)
    log_gateway_message(
        "inbound", channel, classified.fields, track_id=classified.track_id, classified_status=classified.status.value
    )
    transaction, applied = await apply_verified_response(session, classified.track_id, classified)
    if applied and notifier is not None:
        notifier.notify(PaymentStatusUpdated(transaction=transaction, channel=channel, fields=classified.fields))
    return transaction


def decrypt_callback(body: bytes, context: SigningContext) -> str:
    """Decrypts a server-to-server callback body into its plaintext query string.

    Raises:
        ConfigurationError: If no resource key is configured
        CryptoError: If the body cannot be decrypted or unpadded
    """
    if not context.resource_key:
        raise ConfigurationError("Resource key is not configured; cannot decrypt gateway callback")
    return crypto.decrypt(body, context.resource_key)


def build_redirect_reply(callback_url: str, decrypted: str) -> str:
    params = parse_query_string(decrypted)
    separator = "&" if "?" in callback_url else "?"
    return f"REDIRECT={callback_url}{separator}{urlencode(params)}"


async def process_encrypted_callback(
    session: AsyncSession,
    body: bytes,
    context: SigningContext,
    callback_url: str,
    notifier: Optional[PaymentNotifier] = None,
) -> CallbackOutcome:
    """Handle the encrypted server-to-server callback.

    Decryption problems produce an empty acknowledgement; the gateway channel
    has no use for error details. Once decrypted, the redirect instruction is
    returned even if persisting fails, so the customer lands on the plaintext
    endpoint which re-verifies and reports the outcome.
    """
    try:
        decrypted = decrypt_callback(body, context)
    except (ConfigurationError, CryptoError) as e:
        logger.error(f"KPay encrypted callback could not be decrypted: {e}", extra={"body_length": len(body)})
        return CallbackOutcome(kind=CallbackKind.REJECTED, body="", error=e)

    fields = parse_query_string(decrypted)
    transaction = None
    error: Optional[Exception] = None
    if fields:
        try:
            transaction = await apply_response(session, fields, context, notifier, channel=Channel.ENCRYPTED.value)
        except KPayException as e:
            logger.error(
                f"KPay encrypted callback could not be applied: {e}",
                extra={"track_id": normalize_keys(fields).get(TRACK_ID_FIELD), "error_type": type(e).__name__},
            )
            error = e

    reply = build_redirect_reply(callback_url, decrypted)
    logger.info("KPay encrypted callback decrypted, returning redirect instruction")
    return CallbackOutcome(kind=CallbackKind.REDIRECT, body=reply, transaction=transaction, error=error)


async def process_plain_callback(
    session: AsyncSession,
    fields: Mapping[str, Any],
    context: SigningContext,
    notifier: Optional[PaymentNotifier] = None,
) -> CallbackOutcome:
    """Handle the browser redirect callback. Typed errors propagate to the caller."""
    transaction = await apply_response(session, fields, context, notifier, channel=Channel.PLAINTEXT.value)
    return CallbackOutcome(kind=CallbackKind.PROCESSED, transaction=transaction)


async def handle_callback(
    session: AsyncSession,
    method: str,
    body: Optional[bytes],
    fields: Mapping[str, Any],
    context: SigningContext,
    callback_url: str,
    notifier: Optional[PaymentNotifier] = None,
) -> CallbackOutcome:
    """Entry point for ``/kpay/response``: routes the request to the right channel."""
    channel = detect_channel(method, body, fields)
    if channel is Channel.PROBE:
        logger.info("KPay response URL validation request", extra={"method": method, "params": list(fields)})
        return CallbackOutcome(kind=CallbackKind.PROBE, body="OK")
    if channel is Channel.ENCRYPTED:
        return await process_encrypted_callback(session, body or b"", context, callback_url, notifier)
    return await process_plain_callback(session, fields, context, notifier)
