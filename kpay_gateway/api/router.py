import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.core.dependencies import (
    get_db_session,
    get_gateway_client,
    get_notifier,
    get_signing_context,
)
from kpay_gateway.core.events import PaymentNotifier
from kpay_gateway.db.exceptions import KPayDBException
from kpay_gateway.db.sqlmodel_models import Transaction
from kpay_gateway.db.transaction_crud import get_transaction_by_track_id
from kpay_gateway.exceptions import (
    ConfigurationError,
    CryptoError,
    GatewayHTTPError,
    GatewayNetworkError,
    InvalidFieldError,
    InvalidSignatureError,
    KPayException,
    MissingFieldError,
    NotFoundError,
)
from kpay_gateway.gateway.client import GatewayClient, reconcile_inquiry
from kpay_gateway.gateway.params import parse_query_string
from kpay_gateway.gateway.payment_methods import get_payment_methods
from kpay_gateway.gateway.request_builder import PaymentRequest, build_payment_request
from kpay_gateway.gateway.response_processor import handle_callback
from kpay_gateway.gateway.signing_context import SigningContext
from kpay_gateway.settings import RESPONSE_PATH
from kpay_gateway.types import CallbackKind, ClassifiedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kpay", tags=["KPay"])

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RefundRequest(BaseModel):
    trans_id: str
    amount: Decimal
    track_id: Optional[str] = None
    udfs: Dict[str, str] = {}


def _error_status(exc: KPayException) -> int:
    if isinstance(exc, (InvalidSignatureError, MissingFieldError, InvalidFieldError, CryptoError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, GatewayHTTPError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, GatewayNetworkError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _to_http_exception(exc: KPayException) -> HTTPException:
    code = _error_status(exc)
    if isinstance(exc, (ConfigurationError, KPayDBException)) or code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        detail = "Payment gateway is not available"
    elif isinstance(exc, (GatewayHTTPError, GatewayNetworkError)):
        detail = "Payment gateway did not respond"
    elif isinstance(exc, NotFoundError):
        detail = "Transaction not found"
    elif isinstance(exc, InvalidSignatureError):
        detail = "Invalid payment response signature"
    else:
        detail = str(exc)
    return HTTPException(status_code=code, detail=detail)


def _transaction_view(transaction: Transaction) -> Dict[str, Any]:
    return {
        "track_id": transaction.track_id,
        "status": transaction.status,
        "amount": str(transaction.amount),
        "currency": transaction.currency,
        "payment_id": transaction.payment_id,
        "trans_id": transaction.trans_id,
        "result": transaction.result,
        "auth": transaction.auth,
        "ref": transaction.ref,
        "error_code": transaction.error_code,
        "error_text": transaction.error_text,
    }


def _classified_view(classified: ClassifiedResponse) -> Dict[str, Any]:
    return {
        "track_id": classified.track_id,
        "status": classified.status.value,
        "result": classified.fields.get("result"),
        "trans_id": classified.fields.get("tranid"),
        "payment_id": classified.fields.get("paymentid"),
    }


async def _collect_fields(request: Request, body: bytes) -> Dict[str, str]:
    fields = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if body and content_type.startswith(_FORM_CONTENT_TYPE):
        fields.update(parse_query_string(body.decode("utf-8", errors="replace")))
    return fields


def _callback_url(request: Request, context: SigningContext) -> str:
    if context.response_url:
        return context.response_url
    return str(request.url.replace(path=RESPONSE_PATH, query=""))


@router.api_route("/response", methods=["GET", "POST"])
async def payment_response(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    context: SigningContext = Depends(get_signing_context),
    notifier: PaymentNotifier = Depends(get_notifier),
):
    """Receives both gateway callback channels as well as URL-validation probes.

    The encrypted server-to-server channel always gets a plain-text reply the
    gateway understands. The browser redirect gets JSON describing the outcome.
    """
    body = await request.body()
    fields = await _collect_fields(request, body)
    logger.info(
        "KPay response received",
        extra={
            "method": request.method,
            "client_ip": request.client.host if request.client else "unknown",
            "content_length": len(body),
        },
    )

    try:
        outcome = await handle_callback(
            session,
            method=request.method,
            body=body,
            fields=fields,
            context=context,
            callback_url=_callback_url(request, context),
            notifier=notifier,
        )
    except KPayException as e:
        logger.warning(f"KPay response rejected: {e}", extra={"error_type": type(e).__name__})
        raise _to_http_exception(e) from e

    if outcome.kind in (CallbackKind.PROBE, CallbackKind.REDIRECT, CallbackKind.REJECTED):
        return PlainTextResponse(outcome.body)
    return _transaction_view(outcome.transaction)


@router.get("/payment-methods")
async def list_payment_methods(platform: str = "web", context: SigningContext = Depends(get_signing_context)):
    """Payment methods to offer at checkout on the given platform (web, ios or android)."""
    return [method.model_dump() for method in get_payment_methods(platform, context)]


@router.post("/payments", status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment: PaymentRequest,
    session: AsyncSession = Depends(get_db_session),
    context: SigningContext = Depends(get_signing_context),
):
    """Creates (or reuses) the pending transaction and returns the gateway redirect URL."""
    try:
        initiation = await build_payment_request(session, payment, context)
    except KPayException as e:
        logger.error(f"KPay payment initiation failed: {e}", extra={"error_type": type(e).__name__})
        raise _to_http_exception(e) from e
    return {
        "track_id": initiation.track_id,
        "redirect_url": initiation.endpoint,
        "transaction": _transaction_view(initiation.transaction),
    }


@router.get("/payments/{track_id}")
async def get_payment(track_id: str, session: AsyncSession = Depends(get_db_session)):
    try:
        transaction = await get_transaction_by_track_id(session, track_id)
    except KPayException as e:
        raise _to_http_exception(e) from e
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return _transaction_view(transaction)


@router.post("/refunds")
async def create_refund(refund: RefundRequest, client: GatewayClient = Depends(get_gateway_client)):
    try:
        classified = await client.refund(refund.trans_id, refund.amount, track_id=refund.track_id, udfs=refund.udfs)
    except KPayException as e:
        logger.error(f"KPay refund failed: {e}", extra={"error_type": type(e).__name__})
        raise _to_http_exception(e) from e
    return _classified_view(classified)


@router.post("/inquiries/{track_id}")
async def inquire_payment(
    track_id: str,
    session: AsyncSession = Depends(get_db_session),
    client: GatewayClient = Depends(get_gateway_client),
    notifier: PaymentNotifier = Depends(get_notifier),
):
    """Asks the gateway for the status of ``track_id`` and reconciles the stored transaction."""
    try:
        transaction = await reconcile_inquiry(session, client, track_id, notifier=notifier)
    except KPayException as e:
        logger.error(f"KPay inquiry failed: {e}", extra={"error_type": type(e).__name__})
        raise _to_http_exception(e) from e
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return _transaction_view(transaction)
