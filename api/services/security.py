from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

import jwt
from passlib.context import CryptContext

from api.services.errors import InvalidOrExpiredToken

logger = logging.getLogger(__name__)

# argon2 is adaptive and salted; passlib compares digests in constant time
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32
INSECURE_SECRETS = {
    "change-me-in-production",
    "change-me-to-random-string",
    "your-secret-key",
    "your-secret-key-here",
}


def hash_password(plaintext: str) -> str:
    return pwd_context.hash(plaintext)


def verify_password(plaintext: str, credential: Optional[str]) -> bool:
    if not plaintext or not credential:
        return False
    try:
        return pwd_context.verify(plaintext, credential)
    except (ValueError, TypeError) as e:
        # Unrecognised or corrupt hash in the store
        logger.error(f"Password hash could not be checked: {e}")
        return False


def require_secret(secret: Optional[str]) -> str:
    """Return the signing secret, or raise if it is missing or guessable."""
    if not secret:
        raise RuntimeError("JWT_SECRET is not set")
    if secret in INSECURE_SECRETS:
        raise RuntimeError("JWT_SECRET is set to a known default value")
    if len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters long")
    return secret


def issue_token(claims: dict, secret: str, ttl: timedelta) -> str:
    if "sub" not in claims:
        raise ValueError("Token claims must include 'sub'")
    now = datetime.now(timezone.utc)
    to_encode = dict(claims)
    to_encode["sub"] = str(to_encode["sub"])
    to_encode.update({"iat": now, "exp": now + ttl})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> dict:
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Token has expired")
        raise InvalidOrExpiredToken()
    except jwt.PyJWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise InvalidOrExpiredToken()
