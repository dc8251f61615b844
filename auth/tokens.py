"""
auth/tokens.py -- Access token issuing and verification.

Security design decisions:
  JWT: python-jose with HS256. A token carries exactly three claims:
       sub (the credential record id, as a string per RFC 7519), iat and exp.
       Nothing else about the principal is embedded -- the guard re-reads the
       record from the store on every request.

  Verification order: signature and structure first (python-jose), then
       expiry against this service's clock. jose's own exp check is disabled
       so that the clock is injectable and the "expired" outcome is reported
       separately from "invalid". Both collapse to 401 at the guard.

  Secret: taken from the Settings object handed to the constructor. There is
       no module-level secret. A missing secret is a ConfigurationError at
       construction time, never a per-request condition.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt

from core.config import ConfigurationError, Settings

logger = logging.getLogger("gatehouse.auth.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidTokenError(TokenError):
    """Signature mismatch, malformed token, or missing/ill-typed claims."""


class ExpiredTokenError(TokenError):
    """Well-formed, correctly signed token whose exp has passed."""


class TokenService:
    """Issue and verify signed, time-bounded access tokens.

    Usage:
        tokens = TokenService(settings)
        token = tokens.issue(42)
        tokens.verify(token)  # 42
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        if not settings.secret_key:
            raise ConfigurationError("Token signing secret is not configured.")
        self._secret = settings.secret_key
        self.ttl_seconds = settings.token_ttl_seconds
        self._clock = clock

    def issue(self, subject_id: int, issued_at: Optional[datetime] = None) -> str:
        """Return a signed token for subject_id, expiring ttl_seconds after issued_at."""
        now = issued_at or self._clock()
        payload = {
            "sub": str(subject_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.ttl_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> int:
        """Return the subject id carried by token.

        Raises InvalidTokenError if the signature or structure is bad, and
        ExpiredTokenError if the token is genuine but past its expiry.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTError as exc:
            raise InvalidTokenError(str(exc)) from exc

        exp = payload.get("exp")
        if not isinstance(exp, int):
            raise InvalidTokenError("Token has no usable exp claim.")
        try:
            subject_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError("Token has no usable sub claim.") from exc

        if self._clock().timestamp() >= exp:
            raise ExpiredTokenError(f"Token for subject {subject_id} expired.")
        return subject_id
