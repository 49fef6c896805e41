"""Out-of-band refund and status-inquiry calls to the gateway."""

import logging
import xml.etree.ElementTree as ET
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.events import PaymentNotifier, PaymentStatusUpdated
from kpay_gateway.core.logging import log_gateway_message, mask_sensitive
from kpay_gateway.db.sqlmodel_models import Transaction
from kpay_gateway.db.transaction_crud import apply_verified_response, get_transaction_by_track_id
from kpay_gateway.exceptions import (
    GatewayHTTPError,
    GatewayNetworkError,
    InvalidFieldError,
    MissingFieldError,
)
from kpay_gateway.gateway import crypto
from kpay_gateway.gateway.params import HASH_FIELD, build_signing_string, format_amount, parse_query_string
from kpay_gateway.gateway.request_builder import generate_track_id
from kpay_gateway.gateway.response_processor import classify_response
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.types import ClassifiedResponse

logger = logging.getLogger(__name__)

ACTION_REFUND = "2"
ACTION_INQUIRY = "8"


def _flatten_xml(element: ET.Element, out: Dict[str, str]) -> None:
    for child in element:
        if len(child):
            _flatten_xml(child, out)
        else:
            out[child.tag] = (child.text or "").strip()


def parse_gateway_reply(body: str) -> Dict[str, str]:
    """Parses a refund/inquiry reply, which the gateway sends either form-encoded or as XML."""
    text = body.strip()
    if text.startswith("<?xml") or text.startswith("<"):
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise InvalidFieldError("body", f"Gateway returned malformed XML: {e}") from e
        fields: Dict[str, str] = {}
        _flatten_xml(root, fields)
        return fields
    return parse_query_string(text)


class GatewayClient:
    """Signed form POSTs for refunds (action 2) and inquiries (action 8).

    Every reply is verified exactly like a payment callback before it is
    returned. Network failures surface as ``GatewayNetworkError`` and are left
    to the caller to retry.
    """

    def __init__(self, http_client: httpx.AsyncClient, context: SigningContext) -> None:
        self.http_client = http_client
        self.context = context

    def _signed_params(self, params: Dict[str, str]) -> Dict[str, str]:
        signed = dict(params)
        signed[HASH_FIELD] = crypto.sign(build_signing_string(signed, self.context.resource_key))
        return signed

    async def _post(self, params: Dict[str, str], operation: str) -> Dict[str, str]:
        log_gateway_message("outbound", operation, params, url=self.context.base_url)
        try:
            response = await self.http_client.post(
                self.context.base_url,
                data=params,
                timeout=httpx.Timeout(self.context.http_timeout),
            )
        except httpx.TimeoutException as e:
            logger.warning(f"KPay {operation} request timed out after {self.context.http_timeout}s")
            raise GatewayNetworkError(f"{operation.capitalize()} request timed out: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"KPay {operation} request failed at transport level: {e}")
            raise GatewayNetworkError(f"{operation.capitalize()} request failed: {e}") from e

        if not response.is_success:
            logger.error(
                f"KPay {operation} HTTP error {response.status_code}",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise GatewayHTTPError(
                f"{operation.capitalize()} request failed: HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        reply = parse_gateway_reply(response.text)
        logger.debug(f"KPay {operation} reply", extra={"fields": mask_sensitive(reply)})
        return reply

    async def refund(
        self,
        trans_id: str,
        amount: Any,
        track_id: Optional[str] = None,
        udfs: Optional[Mapping[str, str]] = None,
    ) -> ClassifiedResponse:
        """Refund (part of) a captured transaction identified by the gateway ``tranid``.

        Raises:
            MissingFieldError: If ``trans_id`` is empty
            InvalidFieldError: If ``amount`` is not a positive number
            GatewayNetworkError, GatewayHTTPError, InvalidSignatureError
        """
        if not trans_id or not str(trans_id).strip():
            raise MissingFieldError("transid", "Transaction ID is required for refund")
        amt = format_amount(amount)
        if Decimal(amt) <= 0:
            raise InvalidFieldError("amt", "Valid refund amount is required")

        params = {
            "id": self.context.tranportal_id,
            "password": self.context.tranportal_password,
            "action": ACTION_REFUND,
            "transid": str(trans_id).strip(),
            "trackid": track_id or generate_track_id(),
            "amt": amt,
        }
        for name, value in (udfs or {}).items():
            if name.lower() in ("udf1", "udf2", "udf3", "udf4", "udf5"):
                params[name.lower()] = value

        reply = await self._post(self._signed_params(params), "refund")
        return classify_response(reply, self.context)

    async def inquire(self, track_id: str, amount: Any = None) -> ClassifiedResponse:
        """Ask the gateway for the current state of a payment.

        Raises:
            MissingFieldError: If ``track_id`` is empty
            GatewayNetworkError, GatewayHTTPError, InvalidSignatureError
        """
        if not track_id or not track_id.strip():
            raise MissingFieldError("trackid", "Track ID is required for inquiry")
        params = {
            "id": self.context.tranportal_id,
            "password": self.context.tranportal_password,
            "action": ACTION_INQUIRY,
            "trackid": track_id.strip(),
        }
        if amount is not None:
            params["amt"] = format_amount(amount)

        reply = await self._post(self._signed_params(params), "inquiry")
        return classify_response(reply, self.context)


async def reconcile_inquiry(
    session: AsyncSession,
    client: GatewayClient,
    track_id: str,
    notifier: Optional[PaymentNotifier] = None,
) -> Optional[Transaction]:
    """Inquire about ``track_id`` and apply the verified answer to the stored transaction.

    Returns None without contacting the gateway when the track ID is unknown
    locally. An inquiry never creates a transaction.
    """
    existing = await get_transaction_by_track_id(session, track_id)
    if existing is None:
        logger.warning(f"Inquiry requested for unknown track_id '{track_id}', nothing to reconcile")
        return None
    classified = await client.inquire(track_id, amount=existing.amount)

    transaction, applied = await apply_verified_response(session, track_id, classified)
    if applied and notifier is not None:
        notifier.notify(PaymentStatusUpdated(transaction=transaction, channel="inquiry", fields=classified.fields))
    return transaction
