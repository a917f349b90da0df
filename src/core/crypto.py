"""
Secret material: password digests, keypairs and opaque random strings.

Everything in here is stateless. Callers pass sizes explicitly (usually read
from Settings) so the helpers can be used without a configured database.
"""
import secrets

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from passlib.hash import bcrypt

from services.exceptions import SecretGenerationError

# URL-safe alphabet, 64 symbols, so every character carries 6 bits
OPAQUE_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"

DEFAULT_TOKEN_LENGTH = 32
DEFAULT_ACCESS_KEY_LENGTH = 32
DEFAULT_RSA_KEY_SIZE = 2048
DEFAULT_BCRYPT_ROUNDS = 12


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """
    Hash a plaintext password with bcrypt.

    Args:
        password: Plaintext password.
        rounds: bcrypt cost factor.

    Returns:
        Modular-crypt digest string (``$2b$...``), salt included.
    """
    return bcrypt.using(rounds=rounds).hash(password)


def verify_password(password: str, digest: str) -> bool:
    """Check a plaintext password against a stored digest. Malformed digests never verify."""
    try:
        return bcrypt.verify(password, digest)
    except ValueError:
        return False


def generate_keypair(key_size: int = DEFAULT_RSA_KEY_SIZE) -> tuple[str, str]:
    """
    Generate an RSA keypair.

    Returns:
        Tuple of (private_key_pem, public_key_pem).

    Raises:
        SecretGenerationError: If the backend refuses the key parameters.
    """
    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise SecretGenerationError(f"RSA keypair generation failed: {e}") from e

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem.decode("utf-8"), public_pem.decode("utf-8")


def random_opaque_string(length: int = DEFAULT_TOKEN_LENGTH) -> str:
    """Return ``length`` characters drawn uniformly from OPAQUE_CHARSET."""
    if length <= 0:
        raise SecretGenerationError(f"Opaque string length must be positive, got {length}")
    return "".join(secrets.choice(OPAQUE_CHARSET) for _ in range(length))


def random_bytes(length: int) -> bytes:
    """Return ``length`` cryptographically random bytes."""
    if length <= 0:
        raise SecretGenerationError(f"Byte key length must be positive, got {length}")
    return secrets.token_bytes(length)


def generate_access_key(length: int = DEFAULT_ACCESS_KEY_LENGTH) -> bytes:
    """Generate the symmetric key an API and its roles share for request signing."""
    return random_bytes(length)
