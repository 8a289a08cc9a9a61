from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt


class TokenError(Exception):
    pass


class InvalidToken(TokenError):
    pass


class ExpiredToken(TokenError):
    pass


class TokenService:
    """Signs and verifies bearer tokens carrying a role-tagged claim set."""

    def __init__(self, secret: str, algorithm: str = "HS256", default_ttl: timedelta = timedelta(days=90)):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self.default_ttl = default_ttl

    def sign(self, claims: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
        to_encode = dict(claims)
        now = datetime.now(timezone.utc)
        to_encode["iat"] = int(now.timestamp())
        to_encode["exp"] = int((now + (ttl or self.default_ttl)).timestamp())
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def verify(self, bearer: str) -> Dict[str, Any]:
        if not bearer:
            raise InvalidToken("empty token")
        try:
            return jwt.decode(bearer, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc
