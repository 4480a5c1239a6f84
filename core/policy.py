"""
core/policy.py -- Password strength policy and temporary password generation.

evaluate() is a pure function. The rules are checked in a fixed order and
each failed rule appends exactly one message, so the same input always yields
the same violation list. The public /validate-password endpoint uses it for
live feedback (advisory); directory/lifecycle.py calls it again before any
credential change (authoritative).

generate_temporary_password() is the inverse: its output always passes
evaluate(), so no account is created with a temporary credential that fails
the policy it will later be held to.
"""

import secrets
import string
from collections.abc import Callable

from core.models import PolicyResult

MIN_LENGTH = 8
# bcrypt reads only the first 72 bytes; longer input would be silently shortened.
MAX_BYTES = 72
SYMBOLS = string.punctuation

# Lowercased. Matching is case-insensitive and exact.
COMMON_PASSWORDS: frozenset[str] = frozenset(
    {
        "password",
        "password1",
        "password1!",
        "password123",
        "password123!",
        "p@ssw0rd",
        "p@ssword1",
        "passw0rd!",
        "12345678",
        "123456789",
        "1234567890",
        "qwerty123",
        "qwerty123!",
        "qwertyuiop",
        "iloveyou",
        "iloveyou1!",
        "letmein1!",
        "welcome1",
        "welcome1!",
        "welcome123!",
        "admin123",
        "admin123!",
        "administrator",
        "changeme",
        "changeme1!",
        "football1!",
        "monkey123!",
        "sunshine1!",
        "trustno1!",
        "abc123!@#",
    }
)

PASSWORD_OK_MESSAGE = "Password is strong."
PASSWORD_WEAK_MESSAGE = "Password does not meet strength requirements."

# (predicate that passes, violation message) in evaluation order.
_RULES: tuple[tuple[Callable[[str], bool], str], ...] = (
    (lambda p: len(p) >= MIN_LENGTH, f"Password must be at least {MIN_LENGTH} characters long."),
    (lambda p: any(c.isupper() for c in p), "Password must contain at least one uppercase letter."),
    (lambda p: any(c.islower() for c in p), "Password must contain at least one lowercase letter."),
    (lambda p: any(c.isdigit() for c in p), "Password must contain at least one number."),
    (lambda p: any(c in SYMBOLS for c in p), "Password must contain at least one special character."),
    (lambda p: p.lower() not in COMMON_PASSWORDS, "Password is too common. Choose something less predictable."),
    (lambda p: len(p.encode("utf-8")) <= MAX_BYTES, f"Password must be at most {MAX_BYTES} bytes long."),
)


def evaluate(password: str) -> PolicyResult:
    """Score a password against every rule and return the structured result."""
    violations = tuple(message for check, message in _RULES if not check(password))
    if violations:
        return PolicyResult(valid=False, message=PASSWORD_WEAK_MESSAGE, violations=violations)
    return PolicyResult(valid=True, message=PASSWORD_OK_MESSAGE)


# Ambiguous glyphs (0/O, 1/l/I) are left out so a temporary password can be
# read back over the phone.
_UPPER = "ABCDEFGHJKLMNPQRSTUVWXYZ"
_LOWER = "abcdefghijkmnopqrstuvwxyz"
_DIGITS = "23456789"
_SYMBOLS = "!@#$%^&*-_=+?"


def generate_temporary_password(length: int = 16) -> str:
    """Return a random password that satisfies evaluate().

    One character from each class is placed first, the rest drawn from the
    combined alphabet, then the whole string is shuffled with SystemRandom.
    The loop only repeats if the draw lands on a common password, which the
    class mix makes practically impossible.
    """
    if length < MIN_LENGTH:
        raise ValueError(f"Temporary passwords must be at least {MIN_LENGTH} characters.")
    if length > MAX_BYTES:
        raise ValueError(f"Temporary passwords must be at most {MAX_BYTES} characters.")
    alphabet = _UPPER + _LOWER + _DIGITS + _SYMBOLS
    rng = secrets.SystemRandom()
    while True:
        chars = [secrets.choice(pool) for pool in (_UPPER, _LOWER, _DIGITS, _SYMBOLS)]
        chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
        rng.shuffle(chars)
        candidate = "".join(chars)
        if evaluate(candidate).valid:
            return candidate
