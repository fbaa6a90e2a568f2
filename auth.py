import secrets

from passlib.context import CryptContext

from config import PASSWORD_HASH_ROUNDS

# pbkdf2_sha256 keeps us off the external `bcrypt` backend; the work
# factor comes from configuration so tests can turn it down.
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__rounds=PASSWORD_HASH_ROUNDS,
)


def hash_password(password: str) -> str:
    """
    Hash a plain-text password using PBKDF2-SHA256.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed: str) -> bool:
    """
    Verify a candidate password against a stored hash (constant time).
    """
    return pwd_context.verify(plain_password, hashed)


def generate_token() -> str:
    """Opaque bearer token, 256 bits of randomness."""
    return secrets.token_urlsafe(32)
