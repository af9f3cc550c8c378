import hashlib
import hmac
import secrets

import jwt

from hookrelay.config import settings


def generate_signature(payload: str, secret: str) -> str:
    """HMAC-SHA256 of the UTF-8 payload keyed by secret, as lowercase hex."""
    return hmac.new(
        secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify_signature(payload: str, signature: str, secret: str) -> bool:
    """Check a hex signature produced by generate_signature.

    Uses a constant-time comparison so response timing reveals nothing about
    how many leading characters matched.
    """
    if not signature:
        return False
    expected = generate_signature(payload, secret)
    return hmac.compare_digest(
        expected.encode("ascii"), signature.lower().encode("utf-8")
    )


def generate_webhook_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def decode_access_token(token: str) -> dict | None:
    """Decode a bearer token issued by the auth service, None if invalid."""
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ACCESS_TOKEN_ALGORITHM],
        )
    except jwt.PyJWTError:
        return None
