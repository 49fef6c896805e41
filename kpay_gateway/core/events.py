"""Status-change notification for downstream collaborators (order fulfilment, redirect selection, ...)."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from psygnal import EmitLoopError, Signal

from kpay_gateway.db.sqlmodel_models import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentStatusUpdated:
    """Emitted after a verified gateway message has been persisted.

    Attributes:
        transaction: The transaction as stored after the update.
        channel: Which inbound path produced the update ("redirect", "server", "inquiry").
        fields: The normalized gateway fields of the message.
    """

    transaction: Transaction
    channel: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def track_id(self) -> str:
        return self.transaction.track_id

    @property
    def status(self) -> str:
        return self.transaction.status


class PaymentNotifier:
    """Holds the status-changed signal. One instance per application."""

    status_changed = Signal(PaymentStatusUpdated)

    def connect(self, listener: Callable[[PaymentStatusUpdated], Any]) -> None:
        self.status_changed.connect(listener)

    def disconnect(self, listener: Callable[[PaymentStatusUpdated], Any]) -> None:
        self.status_changed.disconnect(listener)

    def notify(self, event: PaymentStatusUpdated) -> None:
        """Emits ``event`` to every listener. A failing listener is logged, never re-raised."""
        try:
            self.status_changed.emit(event)
        except EmitLoopError as e:
            logger.error(
                f"Status listener failed for track_id '{event.track_id}': {e}",
                exc_info=True,
                extra={"track_id": event.track_id, "status": event.status},
            )
