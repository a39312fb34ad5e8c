"""
Password hashing, verification and strength checks for admin accounts.
"""

import base64
import hashlib
import logging
import re
import secrets
import string
from functools import lru_cache

import bcrypt

from cancha.utils.constants import (
    PASSWORD_SALT_ROUNDS,
    PASSWORD_MIN_LENGTH,
    PASSWORD_MAX_LENGTH,
)
from cancha.utils.errors import HashingError, ValidationError

logger = logging.getLogger(__name__)

PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
MIN_GENERATED_PASSWORD_LENGTH = 12

COMMON_PASSWORDS = {
    "password",
    "123456",
    "123456789",
    "qwerty",
    "abc123",
    "password123",
    "admin",
    "letmein",
    "welcome",
    "monkey",
    "dragon",
    "pass",
    "master",
    "shadow",
    "football",
}

_STRENGTH_DESCRIPTIONS = {
    0: "Muy débil",
    1: "Muy débil",
    2: "Débil",
    3: "Moderada",
    4: "Fuerte",
}


class PasswordValidationError(ValidationError):
    """Password does not satisfy the strength policy."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def _prepare(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes; digest first so every character counts
    digest = hashlib.sha256(password.encode("utf-8")).digest()
    return base64.b64encode(digest)


def validate_password_strength(password: str) -> None:
    """
    Validate a password against the admin password policy.

    Args:
        password: Plain text password

    Raises:
        PasswordValidationError: Listing every requirement the password misses
    """
    if not password:
        raise PasswordValidationError("La contraseña es requerida")

    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"La contraseña debe tener al menos {PASSWORD_MIN_LENGTH} caracteres")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"La contraseña no puede tener más de {PASSWORD_MAX_LENGTH} caracteres")
    if not re.search(r"[a-z]", password):
        errors.append("La contraseña debe contener al menos una letra minúscula")
    if not re.search(r"[A-Z]", password):
        errors.append("La contraseña debe contener al menos una letra mayúscula")
    if not re.search(r"\d", password):
        errors.append("La contraseña debe contener al menos un número")

    if errors:
        raise PasswordValidationError(", ".join(errors))


def hash_password(password: str) -> str:
    """
    Hash a password with bcrypt after checking it against the policy.

    Args:
        password: Plain text password

    Returns:
        bcrypt hash string

    Raises:
        HashingError: If the password is invalid or hashing fails
    """
    try:
        validate_password_strength(password)
    except PasswordValidationError as e:
        raise HashingError(e.message) from e

    try:
        hashed = bcrypt.hashpw(_prepare(password), bcrypt.gensalt(rounds=PASSWORD_SALT_ROUNDS))
        return hashed.decode("utf-8")
    except Exception as e:
        logger.error(f"Password hashing failed: {e}")
        raise HashingError("Error al procesar la contraseña") from e


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a plain password against a stored hash.

    Returns False for empty input or a malformed hash instead of raising.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_prepare(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.warning(f"Password verification failed on malformed hash: {e}")
        return False


def generate_secure_password(length: int = 16) -> str:
    """
    Generate a random password containing every character class.

    Args:
        length: Total length, at least 12

    Returns:
        Password with at least one lowercase, uppercase, digit and symbol

    Raises:
        ValueError: If length is below 12
    """
    if length < MIN_GENERATED_PASSWORD_LENGTH:
        raise ValueError(
            f"Password length must be at least {MIN_GENERATED_PASSWORD_LENGTH} characters"
        )

    classes = [string.ascii_lowercase, string.ascii_uppercase, string.digits, PASSWORD_SYMBOLS]
    alphabet = "".join(classes)

    chars = [secrets.choice(charset) for charset in classes]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(classes)))

    # Fisher-Yates with a CSPRNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def get_password_strength(password: str) -> int:
    """Heuristic strength score from 0 (very weak) to 4 (strong)."""
    if not password:
        return 0

    score = 0
    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    if re.search(r"[a-z]", password):
        score += 1
    if re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"\d", password):
        score += 1
    if any(char in PASSWORD_SYMBOLS for char in password):
        score += 1

    if password.lower() in COMMON_PASSWORDS:
        score -= 2

    return max(0, min(score, 4))


def get_password_strength_description(score: int) -> str:
    return _STRENGTH_DESCRIPTIONS.get(max(0, min(score, 4)))


@lru_cache(maxsize=1)
def get_dummy_hash() -> str:
    """
    Hash compared against when a login names no account.

    Keeps the response time of unknown usernames close to that of known ones.
    """
    return hash_password(generate_secure_password())
