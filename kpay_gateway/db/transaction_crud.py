# CRUD operations for the Transaction model.

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kpay_gateway.db.exceptions import (
    KPayDBIntegrityError,
    KPayDBOperationError,
    KPayDBQueryError,
    KPayDBTransactionError,
)
from kpay_gateway.exceptions import NotFoundError
from kpay_gateway.types import ClassifiedResponse

from .sqlmodel_models import Transaction, TransactionStatus, naive_utcnow

logger = logging.getLogger(__name__)


def _latest_for_track_id(track_id: str, lock: bool = False):
    # Pending row first, then the most recent terminal one.
    stmt = (
        select(Transaction)
        .where(Transaction.track_id == track_id)  # type: ignore[arg-type]
        .order_by(
            (Transaction.status == TransactionStatus.PENDING.value).desc(),  # type: ignore[arg-type]
            Transaction.id.desc(),  # type: ignore[union-attr]
        )
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update()
    return stmt


async def _get_pending(session: AsyncSession, track_id: str, lock: bool = False) -> Optional[Transaction]:
    stmt = select(Transaction).where(
        Transaction.track_id == track_id,  # type: ignore[arg-type]
        Transaction.status == TransactionStatus.PENDING.value,  # type: ignore[arg-type]
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_or_reuse_pending(
    session: AsyncSession,
    track_id: str,
    amount: Decimal,
    currency: str,
    request_snapshot: Dict[str, Any],
    payment_method: Optional[str] = None,
) -> Transaction:
    """Create a pending transaction for ``track_id``, or reuse the one that already exists.

    A duplicate submission with the same track ID refreshes the stored request
    snapshot instead of inserting a second row. Concurrent callers are resolved
    by the partial unique index on pending track IDs: the loser of the insert
    race rolls back and picks up the winner's row.

    Args:
        session: The database session
        track_id: Merchant-generated correlation ID
        amount: Amount with three fractional digits
        currency: 3-digit ISO 4217 numeric code
        request_snapshot: The outbound request, stored for audit
        payment_method: Optional payment method code chosen by the customer

    Returns:
        The pending transaction

    Raises:
        KPayDBIntegrityError: If the insert conflicts and no pending row can be found afterwards
        KPayDBTransactionError: If the transaction fails
        KPayDBOperationError: For other database errors
    """
    try:
        existing = await _get_pending(session, track_id, lock=True)
        if existing is not None:
            logger.warning(
                f"Duplicate track_id '{track_id}' detected, reusing pending transaction {existing.id}",
                extra={"track_id": track_id, "transaction_id": existing.id},
            )
            return await _refresh_snapshot(session, existing, request_snapshot)

        transaction = Transaction(
            track_id=track_id,
            amount=amount,
            currency=currency,
            status=TransactionStatus.PENDING.value,
            payment_method=payment_method,
            request_data=request_snapshot,
        )
        session.add(transaction)
        try:
            await session.commit()
        except IntegrityError as ie:
            await session.rollback()
            logger.info(f"Concurrent insert for track_id '{track_id}' lost the race, reusing the winner's row")
            winner = await _get_pending(session, track_id, lock=True)
            if winner is None:
                raise KPayDBIntegrityError(
                    f"Could not create transaction for track_id '{track_id}' due to constraint violation: {ie}", ie
                ) from ie
            return await _refresh_snapshot(session, winner, request_snapshot)

        await session.refresh(transaction)
        logger.info(
            f"Created pending transaction {transaction.id} for track_id '{track_id}'",
            extra={"track_id": track_id, "amount": str(amount), "currency": currency},
        )
        return transaction
    except KPayDBIntegrityError:
        raise
    except SQLAlchemyError as sqla_err:
        await session.rollback()
        logger.error(f"SQLAlchemy error creating transaction for track_id '{track_id}': {sqla_err}")
        raise KPayDBTransactionError(
            f"Database transaction failed while creating transaction: {sqla_err}"
        ) from sqla_err


async def _refresh_snapshot(
    session: AsyncSession, transaction: Transaction, request_snapshot: Dict[str, Any]
) -> Transaction:
    transaction.request_data = request_snapshot
    transaction.updated_at = naive_utcnow()
    await session.commit()
    await session.refresh(transaction)
    return transaction


async def apply_verified_response(
    session: AsyncSession, track_id: str, classified: ClassifiedResponse
) -> Tuple[Transaction, bool]:
    """Write a verified gateway response onto the transaction for ``track_id``.

    Re-applying the same terminal result is a harmless overwrite. A terminal
    transaction never moves to a different status; such a message is logged
    and ignored.

    Returns:
        The transaction and whether the response was applied to it

    Raises:
        NotFoundError: If no transaction exists for the track ID
        KPayDBTransactionError: If the transaction fails
    """
    try:
        result = await session.execute(_latest_for_track_id(track_id, lock=True))
        transaction = result.scalar_one_or_none()
        if transaction is None:
            logger.warning(f"Gateway response references unknown track_id '{track_id}'")
            raise NotFoundError(f"Transaction not found for track_id '{track_id}'", track_id=track_id)

        current = TransactionStatus(transaction.status)
        if current.is_terminal and classified.status != current:
            logger.warning(
                f"Ignoring {classified.status.value} response for track_id '{track_id}': "
                f"transaction {transaction.id} is already {current.value}",
                extra={"track_id": track_id, "current_status": current.value},
            )
            # Release the row lock without discarding the loaded state.
            await session.commit()
            return transaction, False

        for column, value in classified.column_values().items():
            setattr(transaction, column, value)
        transaction.status = classified.status.value
        transaction.updated_at = naive_utcnow()

        await session.commit()
        await session.refresh(transaction)
        logger.info(
            f"Transaction {transaction.id} for track_id '{track_id}' is now {transaction.status}",
            extra={"track_id": track_id, "status": transaction.status, "result": transaction.result},
        )
        return transaction, True
    except NotFoundError:
        await session.rollback()
        raise
    except SQLAlchemyError as sqla_err:
        await session.rollback()
        logger.error(f"SQLAlchemy error applying response for track_id '{track_id}': {sqla_err}")
        raise KPayDBTransactionError(
            f"Database transaction failed while applying gateway response: {sqla_err}"
        ) from sqla_err


async def get_transaction_by_track_id(session: AsyncSession, track_id: str) -> Optional[Transaction]:
    """Get the current transaction for a track ID (the pending one, else the newest).

    Raises:
        KPayDBQueryError: If the query execution fails
    """
    try:
        result = await session.execute(_latest_for_track_id(track_id))
        return result.scalar_one_or_none()
    except SQLAlchemyError as sqla_err:
        logger.error(f"SQLAlchemy error fetching transaction by track_id '{track_id}': {sqla_err}")
        raise KPayDBQueryError(f"Database query failed while fetching transaction: {sqla_err}") from sqla_err


async def get_transaction_by_external_id(session: AsyncSession, trans_id: str) -> Optional[Transaction]:
    """Get a transaction by the gateway-issued transaction ID (``tranid``).

    Raises:
        KPayDBQueryError: If the query execution fails
    """
    try:
        stmt = (
            select(Transaction)
            .where(Transaction.trans_id == trans_id)  # type: ignore[arg-type]
            .order_by(Transaction.id.desc())  # type: ignore[union-attr]
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
    except SQLAlchemyError as sqla_err:
        logger.error(f"SQLAlchemy error fetching transaction by trans_id '{trans_id}': {sqla_err}")
        raise KPayDBQueryError(f"Database query failed while fetching transaction: {sqla_err}") from sqla_err


async def list_transactions(session: AsyncSession, status: Optional[TransactionStatus] = None) -> List[Transaction]:
    """Get a list of transactions, optionally filtered by status.

    Raises:
        KPayDBQueryError: If the query execution fails
    """
    try:
        stmt = select(Transaction).order_by(Transaction.id)  # type: ignore[arg-type]
        if status is not None:
            stmt = stmt.where(Transaction.status == status.value)  # type: ignore[arg-type]
        result = await session.execute(stmt)
        return list(result.scalars().all())
    except SQLAlchemyError as sqla_err:
        logger.error(f"SQLAlchemy error listing transactions: {sqla_err}")
        raise KPayDBQueryError(f"Database query failed while listing transactions: {sqla_err}") from sqla_err
    except Exception as e:
        logger.error(f"Unexpected error listing transactions: {e}")
        raise KPayDBOperationError(f"Unexpected error during transaction listing: {e}") from e


async def get_transaction_by_id(session: AsyncSession, transaction_id: int) -> Optional[Transaction]:
    """Get a transaction by its primary key.

    Raises:
        KPayDBQueryError: If the query execution fails
    """
    try:
        return await session.get(Transaction, transaction_id)
    except SQLAlchemyError as sqla_err:
        logger.error(f"SQLAlchemy error fetching transaction by ID {transaction_id}: {sqla_err}")
        raise KPayDBQueryError(f"Database query failed while fetching transaction: {sqla_err}") from sqla_err
