"""Authentication utilities"""
from passlib.hash import pbkdf2_sha256

# Verified against when the email is unknown so both login failures cost the same
_DUMMY_HASH = pbkdf2_sha256.hash("devicehub-dummy-password")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    """Hash a password with PBKDF2-SHA256"""
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pbkdf2_sha256.verify(password, password_hash)


def burn_password_check(password: str) -> None:
    """Spend the same work as a real verification for an unknown account."""
    pbkdf2_sha256.verify(password, _DUMMY_HASH)
