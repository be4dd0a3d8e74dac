"""Salted PBKDF2-SHA256 password hashes, stored as ``pbkdf2_sha256$iterations$salt$hash``."""
import base64
import hashlib
import hmac
import secrets

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 260_000


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def hash_password(password: str, iterations: int = ITERATIONS) -> str:
    salt = secrets.token_bytes(16)
    digest = _derive(password, salt, iterations)
    return "$".join(
        [
            ALGORITHM,
            str(iterations),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, digest = encoded.split("$")
        iteration_count = int(iterations)
    except ValueError:
        return False
    if algorithm != ALGORITHM:
        return False
    candidate = _derive(password, base64.b64decode(salt), iteration_count)
    return hmac.compare_digest(candidate, base64.b64decode(digest))
