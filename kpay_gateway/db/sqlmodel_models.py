import datetime as dt
import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, Numeric, String, text, types
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def naive_utcnow() -> dt.datetime:
    # Naive UTC timestamp to match TIMESTAMP WITHOUT TIME ZONE columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JsonBOrJson(types.TypeDecorator):
    """
    Represents a JSON type that uses JSONB for PostgreSQL and JSON for other dialects (like SQLite).
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        else:
            return dialect.type_descriptor(JSON())


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


_PENDING_ONLY = text("status = 'pending'")


class Transaction(SQLModel, table=True):
    """One payment attempt, correlated with the gateway by ``track_id``.

    Only one pending row may exist per track ID; the partial unique index below
    enforces that at the database level. Terminal rows keep their track ID.
    """

    __tablename__ = "kpay_payments"  # type: ignore

    id: Optional[int] = Field(default=None, primary_key=True)
    track_id: str = Field(sa_column=Column(String(40), nullable=False, index=True))
    amount: Decimal = Field(sa_column=Column(Numeric(15, 3), nullable=False))
    currency: str = Field(default="414", sa_column=Column(String(3), nullable=False))
    status: str = Field(
        default=TransactionStatus.PENDING.value,
        sa_column=Column(String(16), nullable=False, index=True, default=TransactionStatus.PENDING.value),
    )
    payment_method: Optional[str] = Field(default=None)

    # --- Gateway result fields ---
    payment_id: Optional[str] = Field(default=None, index=True)
    result: Optional[str] = Field(default=None)
    result_code: Optional[str] = Field(default=None)
    auth: Optional[str] = Field(default=None)
    ref: Optional[str] = Field(default=None)
    trans_id: Optional[str] = Field(default=None, index=True)
    post_date: Optional[str] = Field(default=None)
    udf1: Optional[str] = Field(default=None)
    udf2: Optional[str] = Field(default=None)
    udf3: Optional[str] = Field(default=None)
    udf4: Optional[str] = Field(default=None)
    udf5: Optional[str] = Field(default=None)
    error_code: Optional[str] = Field(default=None)
    error_text: Optional[str] = Field(default=None)

    # --- Raw payloads (audit/debug only) ---
    request_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JsonBOrJson))
    response_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JsonBOrJson))

    # --- Timestamps ---
    created_at: dt.datetime = Field(default_factory=naive_utcnow, nullable=False)
    updated_at: dt.datetime = Field(default_factory=naive_utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_kpay_payments_pending_track_id",
            "track_id",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
        Index("ix_kpay_payments_track_id_status", "track_id", "status"),
    )

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    def is_successful(self) -> bool:
        return self.status == TransactionStatus.SUCCESS.value

    def is_failed(self) -> bool:
        return self.status == TransactionStatus.FAILED.value

    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING.value

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, "
            f"track_id='{self.track_id}', "
            f"amount='{self.amount}', "
            f"status='{self.status}')>"
        )
