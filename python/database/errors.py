"""
Service-level exceptions.

Repository exceptions (RepositoryError and friends) live in
database.repositories; these are raised by the services on top of them and
mapped to HTTP responses by api.middleware.
"""


class ServiceError(Exception):
    """Base exception for service errors."""
    pass


class ValidationError(ServiceError):
    """Raised when a request is well-formed but not acceptable (client error)."""
    pass


class InvalidSignatureError(ServiceError):
    """Raised when a webhook signature is missing or does not verify."""
    pass
