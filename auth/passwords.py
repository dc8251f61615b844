"""
auth/passwords.py -- bcrypt password hashing.

Security design decisions:
  bcrypt is the right choice for low-entropy secrets (passwords) because its
  cost factor makes offline brute-force expensive. Every hash embeds its own
  salt and cost ("$2b$<rounds>$<salt><digest>"), so verify() needs nothing but
  the stored string. bcrypt.checkpw compares digests in constant time.

  Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
  wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
  rejects with an explicit error.

  Passwords longer than 72 bytes are pre-hashed with SHA-256 (base64 encoded)
  before bcrypt sees them, so hashing never fails on input content and long
  passphrases are not silently truncated.

  Text is encoded with errors="surrogatepass": a lone surrogate (which a
  Python str can hold but strict UTF-8 refuses) still yields stable bytes.

  The dummy hash is computed when the hasher is constructed. It doubles as the
  startup self-test: if bcrypt is unusable the constructor raises and the
  process does not start.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib
import logging

import bcrypt

logger = logging.getLogger("gatehouse.auth.passwords")

_BCRYPT_MAX_BYTES = 72


def _prepare(plain: str) -> bytes:
    raw = plain.encode("utf-8", errors="surrogatepass")
    if len(raw) > _BCRYPT_MAX_BYTES:
        raw = base64.b64encode(hashlib.sha256(raw).digest())
    return raw


class PasswordHasher:
    """Salted, deliberately slow one-way password transform.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("correct horse battery staple")
        hasher.verify(stored, "correct horse battery staple")  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("gatehouse_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Two calls never return the same string."""
        return bcrypt.hashpw(_prepare(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, hashed: str, plain: str) -> bool:
        """Return True if plain matches hashed.

        A malformed stored hash is a mismatch, not an error.
        """
        try:
            return bcrypt.checkpw(_prepare(plain), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed; treating as mismatch")
            return False

    def burn(self, plain: str) -> None:
        """Run a full verification against the dummy hash and discard the result.

        Called on the "no such user" path so response time does not reveal
        whether an identifier exists.
        """
        self.verify(self._dummy_hash, plain)
