"""
Password hashing and token handling for the Auth service.
"""

from .passwords import PasswordHasher
from .tokens import IssuedRefreshToken, TokenService

__all__ = ["IssuedRefreshToken", "PasswordHasher", "TokenService"]
