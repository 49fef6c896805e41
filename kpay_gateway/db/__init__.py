"""Database models and session management."""

from .sqlmodel_models import Transaction, TransactionStatus

__all__ = ["Transaction", "TransactionStatus"]
