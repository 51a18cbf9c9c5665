"""
Business logic services.
"""
from sukusuku.services.auth_service import AuthService
from sukusuku.services.credit_service import CreditService, RemoteCreditClient
from sukusuku.services.email_service import EmailService

__all__ = [
    "AuthService",
    "CreditService",
    "RemoteCreditClient",
    "EmailService",
]
