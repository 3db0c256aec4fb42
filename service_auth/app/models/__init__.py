"""
User model and request schemas for the Auth service.
"""

from .user import Department, RefreshTokenRecord, Role, User

__all__ = ["Department", "RefreshTokenRecord", "Role", "User"]
