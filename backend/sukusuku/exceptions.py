"""
Domain errors raised by services and repositories.
Route handlers translate them into HTTP responses.
"""


class ServiceError(ValueError):
    """Base class for expected, user-facing failures."""


class DuplicateEmailError(ServiceError):
    def __init__(self, email: str):
        super().__init__("User with this email already exists")
        self.email = email


class InvalidCredentialsError(ServiceError):
    def __init__(self):
        super().__init__("Invalid email or password")


class ProviderMismatchError(ServiceError):
    """Password login attempted on an account that signs in with Google."""

    def __init__(self):
        super().__init__("Please use Google login for this account")


class UserNotFoundError(ServiceError):
    def __init__(self, user_id: str = None):
        super().__init__("User not found")
        self.user_id = user_id


class InvalidTokenError(ServiceError):
    """Token is malformed, badly signed, expired or revoked."""


class EmailDeliveryError(Exception):
    """No configured email provider accepted the message."""
