"""Database-specific exceptions for the KPay gateway."""

from sqlalchemy.exc import IntegrityError

from kpay_gateway.exceptions import KPayException


class KPayDBException(KPayException):
    """Base exception for all KPay DB related errors."""

    pass


class KPayDBConfigurationError(KPayDBException):
    """Exception raised when a database configuration is invalid or missing required variables."""

    pass


class KPayDBConnectionError(KPayDBException):
    """Exception raised when a connection to the database fails."""

    pass


class KPayDBOperationError(KPayDBException):
    """Base exception for database operation errors.

    This exception is raised when a database operation fails for any reason.
    It serves as a base class for more specific database operation errors.
    """

    pass


class KPayDBQueryError(KPayDBOperationError):
    """Exception raised when a SELECT query fails to execute properly."""

    pass


class KPayDBTransactionError(KPayDBOperationError):
    """Exception raised when a transaction (commit, rollback) fails."""

    pass


class KPayDBIntegrityError(KPayDBOperationError):
    """Exception raised when a database integrity constraint is violated.

    This exception wraps SQLAlchemy's IntegrityError.
    """

    def __init__(self, message: str, original_error: IntegrityError | None = None):
        """Initialize the exception.

        Args:
            message: A descriptive error message
            original_error: The original IntegrityError that was raised
        """
        super().__init__(message)
        self.original_error = original_error
