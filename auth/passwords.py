"""
auth/passwords.py -- Password hashing, verification and complexity scoring.

Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
brute-force expensive; the work factor is configurable (default 12 rounds).
bcrypt refuses input longer than 72 bytes. hash() turns that into
InvalidInput, and the API layer caps the encoded length at the same limit.

verify() never raises. Any failure (malformed hash, wrong type) is reported
as a plain False so error detail cannot leak through exceptions or timing.

dummy_hash is computed once per vault with the same work factor as real
hashes. The login flow verifies against it when the email is unknown, so an
unknown account costs the same bcrypt work as a wrong password [T1].

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import re

import bcrypt

from auth.models import PasswordComplexity
from core.config import Settings
from core.errors import InvalidInput

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")

DEFAULT_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
MAX_PASSWORD_BYTES = 72


class CredentialVault:
    """Salted adaptive hashing plus the password complexity policy.

    Each require_* flag can be switched off; a disabled criterion is reported
    as satisfied so the min_criteria threshold keeps its meaning.
    """

    def __init__(
        self,
        rounds: int = 12,
        min_length: int = 8,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
        special_chars: str = DEFAULT_SPECIAL_CHARS,
        min_criteria: int = 4,
    ) -> None:
        self.rounds = rounds
        self.min_length = min_length
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special = require_special
        self.special_chars = special_chars
        self.min_criteria = min_criteria
        # Timing equalization hash [T1]
        self.dummy_hash: str = self.hash("trustgate_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialVault":
        return cls(
            rounds=settings.bcrypt_rounds,
            min_length=settings.password_min_length,
            require_uppercase=settings.password_require_uppercase,
            require_lowercase=settings.password_require_lowercase,
            require_digit=settings.password_require_digit,
            require_special=settings.password_require_special,
            special_chars=settings.password_special_chars,
            min_criteria=settings.password_min_criteria,
        )

    def hash(self, password: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises InvalidInput for empty or non-string input, and for input whose
        UTF-8 encoding exceeds MAX_PASSWORD_BYTES.
        """
        if not isinstance(password, str) or not password:
            raise InvalidInput("Password must be a non-empty string.")
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise InvalidInput(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except Exception:
            return False

    def score_password_complexity(self, password: str) -> PasswordComplexity:
        """Evaluate the five criteria independently and count the satisfied ones."""
        if not isinstance(password, str):
            password = ""
        criteria = {
            "min_length": len(password) >= self.min_length,
            "uppercase": not self.require_uppercase or bool(_UPPER_RE.search(password)),
            "lowercase": not self.require_lowercase or bool(_LOWER_RE.search(password)),
            "digit": not self.require_digit or bool(_DIGIT_RE.search(password)),
            "special": not self.require_special or any(ch in self.special_chars for ch in password),
        }
        score = sum(criteria.values())
        # Length is a hard floor on top of the criteria count.
        valid = score >= self.min_criteria and criteria["min_length"]
        return PasswordComplexity(valid=valid, score=score, criteria=criteria)
