"""
Account business logic for the Auth service.
"""

from .account_service import AccountService, AuthResult

__all__ = ["AccountService", "AuthResult"]
