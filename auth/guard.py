"""
auth/guard.py -- Per-route authentication policy.

Two pieces:

  RouteTable -- a static map of route id -> RouteEntry(handler, requires_auth)
      built once at startup. There is no runtime API to flip a route between
      public and protected; freeze() makes the table read-only before the app
      serves traffic. A route id the table has never heard of is treated as
      protected.

  RouteGuard -- the per-request state machine:

      Unchecked -> PublicAllowed                       (route is public)
      Unchecked -> TokenRequired -> Authenticated      (valid token, live subject)
                                 -> Rejected           (anything else)

      Rejected carries an internal reason (missing_token, invalid_token,
      expired_token, unknown_principal) for logs only. Callers outside auth/
      must treat every rejection the same way.

The guard re-reads the credential record for every authenticated request.
Tokens cannot be revoked, so deleting the record is the one way to cut off a
principal before its token expires.

Layer rule: no imports from api/. No framework types -- auth/dependencies.py
adapts this to FastAPI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from auth.models import Principal
from auth.store import CredentialStore
from auth.tokens import ExpiredTokenError, InvalidTokenError, TokenService

logger = logging.getLogger("gatehouse.auth.guard")

_BEARER_PREFIX = "bearer "


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteEntry:
    route_id: str
    handler: Callable
    requires_auth: bool = True


class RouteTable:
    """Static route id -> RouteEntry registry.

    Usage:
        table = RouteTable()
        table.add("auth_login", login, requires_auth=False)
        table.add("auth_me", me)
        table.freeze()
    """

    def __init__(self) -> None:
        self._entries: dict[str, RouteEntry] = {}
        self._frozen = False

    def add(self, route_id: str, handler: Callable, requires_auth: bool = True) -> RouteEntry:
        if self._frozen:
            raise RuntimeError("Route table is frozen; routes are fixed at startup.")
        if route_id in self._entries:
            raise ValueError(f"Route {route_id!r} is already registered.")
        entry = RouteEntry(route_id=route_id, handler=handler, requires_auth=requires_auth)
        self._entries[route_id] = entry
        return entry

    def freeze(self) -> None:
        self._frozen = True

    def get(self, route_id: str) -> Optional[RouteEntry]:
        return self._entries.get(route_id)

    def requires_auth(self, route_id: Optional[str]) -> bool:
        """Unknown routes fail closed."""
        entry = self._entries.get(route_id) if route_id is not None else None
        return True if entry is None else entry.requires_auth

    def __contains__(self, route_id: str) -> bool:
        return route_id in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class GuardState(str, Enum):
    PUBLIC_ALLOWED = "public_allowed"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class RejectReason(str, Enum):
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    UNKNOWN_PRINCIPAL = "unknown_principal"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    principal: Optional[Principal] = None
    reason: Optional[RejectReason] = None

    @property
    def allowed(self) -> bool:
        return self.state is not GuardState.REJECTED


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an "Authorization: Bearer <token>" value.

    A missing header, another scheme, or an empty token all return None.
    The scheme name is matched case-insensitively (RFC 7235).
    """
    if not authorization or authorization[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class RouteGuard:
    """Decide whether a request for a given route may proceed."""

    def __init__(self, table: RouteTable, tokens: TokenService, store: CredentialStore) -> None:
        self.table = table
        self.tokens = tokens
        self.store = store

    def evaluate(self, route_id: Optional[str], authorization: Optional[str]) -> GuardDecision:
        if not self.table.requires_auth(route_id):
            return GuardDecision(state=GuardState.PUBLIC_ALLOWED)

        token = extract_bearer_token(authorization)
        if token is None:
            return self._reject(route_id, RejectReason.MISSING_TOKEN)

        try:
            subject_id = self.tokens.verify(token)
        except ExpiredTokenError:
            return self._reject(route_id, RejectReason.EXPIRED_TOKEN)
        except InvalidTokenError:
            return self._reject(route_id, RejectReason.INVALID_TOKEN)

        record = self.store.find_by_id(subject_id)
        if record is None:
            return self._reject(route_id, RejectReason.UNKNOWN_PRINCIPAL)

        return GuardDecision(state=GuardState.AUTHENTICATED, principal=Principal.from_record(record))

    def _reject(self, route_id: Optional[str], reason: RejectReason) -> GuardDecision:
        logger.info("Rejected request for route %s: %s", route_id, reason.value)
        return GuardDecision(state=GuardState.REJECTED, reason=reason)
