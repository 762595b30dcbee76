"""
Service-level error taxonomy.

Routers translate these into HTTP responses through the handler registered
in main.py; messages are safe to show to clients.
"""


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = "An error occurred"):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(ServiceError):
    """Bad credentials, or a missing, malformed or expired session token."""

    status_code = 401
    error_code = "unauthenticated"


class ValidationFailure(ServiceError):
    """A required field is missing or invalid."""

    status_code = 400
    error_code = "validation_error"


class SignatureVerificationFailure(ServiceError):
    """Webhook body and signature do not match; the body is never parsed."""

    status_code = 400
    error_code = "invalid_signature"


class CorrelationMiss(ServiceError):
    """A billing event does not resolve to a local user. Acknowledged, not surfaced."""

    status_code = 200
    error_code = "uncorrelated"


class DownstreamFailure(ServiceError):
    """The store or the payment provider failed while serving the request."""

    status_code = 502
    error_code = "downstream_error"


class ConfigurationError(ServiceError):
    """A setting required by the operation is not configured."""

    status_code = 503
    error_code = "not_configured"
