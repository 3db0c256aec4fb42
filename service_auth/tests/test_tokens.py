"""
Unit tests for token issuance and password hashing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from service_auth.app.models.user import Department, Role, User
from service_auth.app.security.passwords import PasswordHasher
from service_auth.app.security.tokens import TokenService
from shared.errors import AuthenticationError


@pytest.fixture
def tokens():
    return TokenService("access-secret", "refresh-secret", access_ttl_seconds=60, refresh_ttl_seconds=3600)


@pytest.fixture
def user():
    return User(
        username="alice",
        email="alice@example.com",
        first_name="Alice",
        last_name="Smith",
        password_hash="hash",
        department=Department.QUALITY,
        role=Role.DIRECTOR,
    )


class TestTokenService:
    """Test cases for TokenService."""

    def test_access_token_round_trip(self, tokens, user):
        claims = tokens.decode_access_token(tokens.issue_access_token(user))

        assert claims["sub"] == user.id
        assert claims["role"] == "director"
        assert claims["firstName"] == "Alice"
        assert claims["exp"] - claims["iat"] == 60

    def test_expired_access_token(self, tokens, user):
        issued = tokens.issue_access_token(user, now=datetime.now(timezone.utc) - timedelta(minutes=5))

        with pytest.raises(AuthenticationError) as exc_info:
            tokens.decode_access_token(issued)

        assert exc_info.value.message == "Token expired"

    def test_refresh_token_is_not_an_access_token(self, tokens, user):
        """The two token kinds are signed with different secrets."""
        refresh = tokens.issue_refresh_token(user)

        with pytest.raises(AuthenticationError) as exc_info:
            tokens.decode_access_token(refresh.token)
        assert exc_info.value.message == "Invalid token"

        with pytest.raises(AuthenticationError):
            tokens.decode_refresh_token(tokens.issue_access_token(user))

    def test_refresh_tokens_are_unique(self, tokens, user):
        first = tokens.issue_refresh_token(user)
        second = tokens.issue_refresh_token(user)

        assert first.token != second.token
        assert tokens.decode_refresh_token(first.token)["sub"] == user.id
        assert first.expires_at - first.issued_at == timedelta(hours=1)


class TestPasswordHasher:
    """Test cases for PasswordHasher."""

    @pytest.mark.asyncio
    async def test_hash_and_verify(self):
        hasher = PasswordHasher(rounds=4)

        hashed = await hasher.hash("Secret123")

        assert hashed != "Secret123"
        assert await hasher.verify("Secret123", hashed) is True
        assert await hasher.verify("Secret124", hashed) is False

    def test_malformed_hash_does_not_verify(self):
        assert PasswordHasher(rounds=4).verify_sync("Secret123", "not-a-hash") is False
