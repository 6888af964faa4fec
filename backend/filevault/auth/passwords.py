"""Password hashing for the credential store (bcrypt through passlib)."""

from passlib.context import CryptContext

_hasher = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt only reads the first 72 bytes and newer backends raise on more
BCRYPT_INPUT_LIMIT = 72


def _bcrypt_input(password: str) -> str:
    head = password.encode("utf-8")[:BCRYPT_INPUT_LIMIT]
    # A multi-byte character split at the limit is dropped
    return head.decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    return _hasher.hash(_bcrypt_input(password))


def verify_password(password: str, password_hash: str) -> bool:
    """Whether password matches password_hash. An unrecognised hash is a mismatch."""
    try:
        return _hasher.verify(_bcrypt_input(password), password_hash)
    except ValueError:
        return False
