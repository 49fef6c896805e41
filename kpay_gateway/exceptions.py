class KPayException(Exception):
    """Base exception for all KPay gateway errors."""

    pass


class ConfigurationError(KPayException):
    """Exception raised when credentials, callback URLs or keys are missing or invalid."""

    pass


class CryptoError(KPayException):
    """Exception raised when ciphertext, padding or key length is malformed."""

    pass


class InvalidSignatureError(KPayException):
    """Exception raised when a gateway message fails hash verification."""

    pass


class NotFoundError(KPayException):
    """Exception raised when a gateway message references an unknown track ID."""

    def __init__(self, message: str, track_id: str | None = None):
        super().__init__(message)
        self.track_id = track_id


class MissingFieldError(KPayException):
    """Exception raised when a required protocol field is absent."""

    def __init__(self, field_name: str, message: str | None = None):
        super().__init__(message or f"Required field '{field_name}' is missing")
        self.field_name = field_name


class InvalidFieldError(KPayException):
    """Exception raised when a protocol field is present but malformed (amount, track ID, ...)."""

    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field_name = field_name


class GatewayNetworkError(KPayException):
    """Exception raised when a refund or inquiry call cannot reach the gateway.

    These errors are retryable by the caller; they never change a payment status.
    """

    retryable = True


class GatewayHTTPError(KPayException):
    """Exception raised when the gateway answers a refund or inquiry call with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
