import hmac
import secrets
import string
from typing import Optional

from passlib.crypto.digest import pbkdf2_hmac

PBKDF2_ROUNDS = 310_000
PBKDF2_KEYLEN = 32
MIN_PASSWORD_LENGTH = 12

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    raw = pbkdf2_hmac("sha256", (password or "").encode("utf-8"), (salt or "").encode("utf-8"), PBKDF2_ROUNDS, PBKDF2_KEYLEN)
    return raw.hex()


def verify_password(password: str, salt: Optional[str], hashed: Optional[str]) -> bool:
    if not hashed or not salt:
        return False
    return hmac.compare_digest(hash_password(password, salt), hashed)


def _normalize_answer(answer: str) -> str:
    return (answer or "").strip().lower()


def hash_security_answer(answer: str, salt: str) -> str:
    # Answers are typed from memory; case and surrounding spaces don't count.
    return hash_password(_normalize_answer(answer), salt)


def verify_security_answer(answer: str, salt: Optional[str], hashed: Optional[str]) -> bool:
    if not _normalize_answer(answer):
        return False
    return verify_password(_normalize_answer(answer), salt, hashed)


def validate_password_policy(password: str) -> list[str]:
    """Return the list of unmet requirements (empty when the password is acceptable)."""
    p = password or ""
    problems = []
    if len(p) < MIN_PASSWORD_LENGTH:
        problems.append(f"must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in p):
        problems.append("must contain an uppercase letter")
    if not any(c.islower() for c in p):
        problems.append("must contain a lowercase letter")
    if not any(c.isdigit() for c in p):
        problems.append("must contain a digit")
    if not any(not c.isalnum() and not c.isspace() for c in p):
        problems.append("must contain a symbol")
    return problems


def _code_groups(groups: int, size: int) -> str:
    return "-".join("".join(secrets.choice(_CODE_ALPHABET) for _ in range(size)) for _ in range(groups))


def generate_recovery_code() -> str:
    return _code_groups(4, 4)


def generate_invite_code() -> str:
    return _code_groups(2, 5)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()
