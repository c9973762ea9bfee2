"""
Domain exceptions raised by services and mapped to HTTP responses by the routers
"""


class UserNotFoundError(Exception):
    """No user row for the given id/email (404)."""


class StoreUnavailableError(Exception):
    """The user store could not be reached (503)."""


class PaymentVerificationError(Exception):
    """Payment parameters or signature rejected (400)."""


class PaymentGatewayError(Exception):
    """The payment gateway call failed (503)."""


class GoogleAuthError(Exception):
    """Google ID token could not be verified (401)."""
