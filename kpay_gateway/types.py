from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from kpay_gateway.db.sqlmodel_models import Transaction, TransactionStatus

# Normalized (lower-case) gateway field name -> Transaction column
RESPONSE_COLUMN_MAP = {
    "paymentid": "payment_id",
    "result": "result",
    "auth": "auth",
    "ref": "ref",
    "tranid": "trans_id",
    "postdate": "post_date",
    "udf1": "udf1",
    "udf2": "udf2",
    "udf3": "udf3",
    "udf4": "udf4",
    "udf5": "udf5",
    "error": "error_code",
    "errortext": "error_text",
}


@dataclass(frozen=True)
class ClassifiedResponse:
    """A verified gateway message together with the status it maps to."""

    track_id: str
    status: TransactionStatus
    fields: Dict[str, str] = field(default_factory=dict)

    def column_values(self) -> Dict[str, Any]:
        """Values for the Transaction result columns. Absent fields become None."""
        values: Dict[str, Any] = {column: self.fields.get(name) or None for name, column in RESPONSE_COLUMN_MAP.items()}
        values["result_code"] = values["result"]
        values["response_data"] = dict(self.fields)
        return values


@dataclass
class PaymentInitiation:
    """Everything the caller needs to send the customer to the gateway."""

    endpoint: str
    encrypted_payload: str
    transaction: Transaction
    track_id: str


class CallbackKind(str, Enum):
    PROBE = "probe"
    PROCESSED = "processed"
    REDIRECT = "redirect"
    REJECTED = "rejected"


@dataclass
class CallbackOutcome:
    """What the HTTP layer should answer after an inbound gateway message."""

    kind: CallbackKind
    body: str = ""
    transaction: Optional[Transaction] = None
    error: Optional[Exception] = None
