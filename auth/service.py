"""
auth/service.py -- Registration and login orchestration.

AuthService is the only place that classifies expected failures. Every public
method returns an AuthResult (AuthSuccess | AuthFailure) rather than raising
for not-found, conflict, bad password or invalid input. Infrastructure errors
(CredentialStoreError, bcrypt internals) still propagate as exceptions.

Flow:
  register: validate -> find_conflict -> hash -> insert -> issue token
  login:    validate -> find_by_username_or_email -> verify -> issue token

Uniqueness is checked before hashing so a duplicate costs one query, and is
checked again by the store's unique indexes at insert time. The second check
is the one that holds under concurrency; DuplicateCredentialError from the
store becomes the same Conflict result as the pre-check.

Cancellation after insert() commits is not rolled back: the record exists
even if the caller never receives the token.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from auth.models import (
    MIN_PASSWORD_LENGTH,
    AuthFailure,
    AuthResult,
    AuthSuccess,
    CredentialRecord,
    FailureKind,
    Principal,
)
from auth.passwords import PasswordHasher
from auth.store import CredentialStore, DuplicateCredentialError
from auth.tokens import TokenService

logger = logging.getLogger("gatehouse.auth")

USER_EXISTS = "Username or email already exists"
USER_NOT_FOUND = "User with given username or email is not found"
INVALID_CREDENTIALS = "Invalid credentials"


def _invalid(field: str, message: str) -> AuthFailure:
    return AuthFailure(kind=FailureKind.VALIDATION, message=message, field=field)


def _is_text(value: str) -> bool:
    """True for a non-blank str that the store can encode as UTF-8."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _check_password(password: str) -> Optional[AuthFailure]:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return _invalid("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return None


def validate_registration(username: str, email: str, password: str) -> Optional[AuthFailure]:
    """Return a VALIDATION failure for the first bad field, or None."""
    if not _is_text(username):
        return _invalid("username", "Username must be non-empty text.")
    if not _is_text(email):
        return _invalid("email", "Email address is not valid.")
    try:
        validate_email(email, check_deliverability=False)
    except (EmailNotValidError, TypeError):
        return _invalid("email", "Email address is not valid.")
    return _check_password(password)


def validate_login(username_or_email: str, password: str) -> Optional[AuthFailure]:
    """Return a VALIDATION failure for the first bad field, or None."""
    if not _is_text(username_or_email):
        return _invalid("usernameOrEmail", "Username or email must be non-empty text.")
    return _check_password(password)


class AuthService:
    """Register and authenticate principals.

    Collaborators are injected so tests can substitute a cheap hasher or a
    fixed-clock token service:

        service = AuthService(CredentialStore(url), PasswordHasher(rounds=4), TokenService(settings))
        result = service.register("bob", "bob@example.com", "hunter22!")
        if result.ok:
            result.token, result.principal
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher, tokens: TokenService) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    def register(self, username: str, email: str, password: str) -> AuthResult:
        """Create a credential record and issue its first token.

        Stored username and email keep their original case. A username
        collision is reported in preference to an email collision.
        """
        failure = validate_registration(username, email, password)
        if failure is not None:
            return failure

        existing = self.store.find_conflict(username, email)
        if existing is not None:
            field = "username" if existing.username.lower() == username.lower() else "email"
            logger.info("Registration rejected: %s already taken", field)
            return AuthFailure(kind=FailureKind.CONFLICT, message=USER_EXISTS, field=field)

        password_hash = self.hasher.hash(password)
        try:
            record = self.store.insert(username, email, password_hash)
        except DuplicateCredentialError as exc:
            logger.info("Registration lost insert race: %s already taken", exc.field)
            return AuthFailure(kind=FailureKind.CONFLICT, message=USER_EXISTS, field=exc.field)

        logger.info("Registered principal id=%d", record.id)
        return self._success(record)

    def login(self, username_or_email: str, password: str) -> AuthResult:
        """Authenticate by username or email (case-insensitive) and password.

        NOT_FOUND and UNAUTHORIZED are distinct here for logging; the HTTP
        layer decides how much of that to reveal. The unknown-identifier path
        still pays for one bcrypt verification.
        """
        failure = validate_login(username_or_email, password)
        if failure is not None:
            return failure

        record = self.store.find_by_username_or_email(username_or_email)
        if record is None:
            self.hasher.burn(password)
            logger.info("Login failed: unknown identifier")
            return AuthFailure(kind=FailureKind.NOT_FOUND, message=USER_NOT_FOUND)

        if not self.hasher.verify(record.password_hash, password):
            logger.info("Login failed: bad password for principal id=%d", record.id)
            return AuthFailure(kind=FailureKind.UNAUTHORIZED, message=INVALID_CREDENTIALS)

        logger.info("Login succeeded for principal id=%d", record.id)
        return self._success(record)

    def _success(self, record: CredentialRecord) -> AuthSuccess:
        return AuthSuccess(token=self.tokens.issue(record.id), principal=Principal.from_record(record))
