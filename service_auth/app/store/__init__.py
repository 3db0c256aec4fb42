"""
User storage for the Auth service.
"""

from .user_store import InMemoryUserStore, UserStore

__all__ = ["InMemoryUserStore", "UserStore"]
