"""
JWT issuance and verification for the Auth service.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from shared.errors import AuthenticationError

from ..models.user import User

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """HS256 signing and verification of access and refresh tokens.

    Access and refresh tokens use different secrets, so one can never be
    accepted in place of the other.
    """

    def __init__(
        self,
        secret: str,
        refresh_secret: str,
        *,
        algorithm: str = "HS256",
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
    ):
        self.secret = secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    def issue_access_token(self, user: User, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "sub": user.id,
            "userId": user.id,
            "username": user.username,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "department": user.department.value,
            "role": user.role.value,
            "roles": [user.role.value],
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def issue_refresh_token(self, user: User, now: Optional[datetime] = None) -> IssuedRefreshToken:
        now = now or datetime.now(timezone.utc)
        expires_at = now + self.refresh_ttl
        claims = {
            "sub": user.id,
            "userId": user.id,
            "jti": uuid.uuid4().hex,
            "type": REFRESH_TOKEN_TYPE,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self.refresh_secret, algorithm=self.algorithm)
        return IssuedRefreshToken(token=token, issued_at=now, expires_at=expires_at)

    def decode_access_token(self, token: str) -> Dict[str, Any]:
        """Verify an access token; expired and invalid are reported apart."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token expired", details={"reason": "token_expired"}) from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid token", details={"reason": "token_invalid"}) from exc

        if claims.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE or not claims.get("sub"):
            raise AuthenticationError("Invalid token", details={"reason": "token_invalid"})
        return claims

    def decode_refresh_token(self, token: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(token, self.refresh_secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthenticationError(
                "Invalid or expired refresh token",
                details={"reason": "refresh_token_invalid"},
            ) from exc

        if claims.get("type") != REFRESH_TOKEN_TYPE or not claims.get("sub"):
            raise AuthenticationError(
                "Invalid or expired refresh token",
                details={"reason": "refresh_token_invalid"},
            )
        return claims
