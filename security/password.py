import secrets

from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password[:72])


def random_password_hash() -> str:
    """Hash of a throwaway password for accounts opened at checkout; the client resets it to log in."""
    return hash_password(secrets.token_urlsafe(24))
