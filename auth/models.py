"""
auth/models.py -- Domain dataclasses and result types for authentication.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only describe shape.

Service operations never raise for expected outcomes. They return an
AuthResult, which is either AuthSuccess or AuthFailure tagged with a
FailureKind. The transport layer maps the tag to a status code.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class CredentialRecord:
    """One registered principal's authentication material.

    id is assigned by the store and never changes. username and email keep
    the case they were registered with; uniqueness is case-insensitive and is
    enforced by the store. password_hash is an opaque bcrypt string, never the
    plaintext.
    """

    id: int
    username: str
    email: str
    password_hash: str
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """The public identity of a credential record.

    This is what gets attached to a request after the guard authenticates it
    and what auth responses return. It never carries password material.
    """

    id: int
    username: str
    email: str

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "Principal":
        return cls(id=record.id, username=record.username, email=record.email)


class FailureKind(str, Enum):
    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class AuthSuccess:
    token: str
    principal: Principal

    ok = True


@dataclass(frozen=True)
class AuthFailure:
    """An expected, client-facing failure.

    field names the offending input for VALIDATION ("email", "password", ...)
    and the colliding attribute for CONFLICT ("username" or "email").
    """

    kind: FailureKind
    message: str
    field: Optional[str] = None

    ok = False


AuthResult = Union[AuthSuccess, AuthFailure]
