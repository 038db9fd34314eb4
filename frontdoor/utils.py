"""
Utility functions for the front door service.
"""

import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the form stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a stored naive-UTC datetime as ISO-8601 with a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def compute_hmac_signature(body: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of body using secret."""
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Signed bytes
        signature: Hex-encoded signature
        secret: Shared secret

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature: body length {len(body)} bytes, signature {signature[:8]}...")

    expected_signature = compute_hmac_signature(body, secret)

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.debug(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def sign_session_token(user_id: str, secret: str) -> str:
    """Build an X-Session-Token value the way the identity provider issues it."""
    return f"{user_id}.{compute_hmac_signature(user_id.encode('utf-8'), secret)}"


def verify_session_token(token: str, secret: str) -> Optional[str]:
    """
    Validate an X-Session-Token of the form <user_id>.<hex signature>.

    Returns:
        The user id when the signature matches, None otherwise
    """
    user_id, sep, signature = token.rpartition(".")
    if not sep or not user_id or not signature:
        return None
    if not verify_hmac_signature(user_id.encode("utf-8"), signature, secret):
        return None
    return user_id


def tokens_match(provided: str, expected: str) -> bool:
    """Constant-time comparison for bearer credentials."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
