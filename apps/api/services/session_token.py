"""Session token helpers for role-scoped API access."""

from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings
from models.user import ROLE_ADMIN, ROLE_BUSINESS, ROLE_CUSTOMER
from services.clock import utcnow


SESSION_TOKEN_TYPE = "clip_session"
KNOWN_ROLES = {ROLE_ADMIN, ROLE_BUSINESS, ROLE_CUSTOMER}


def create_session_token(
    user_id: str,
    role: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    if role not in KNOWN_ROLES:
        raise ValueError(f"Unknown role '{role}'.")

    now = utcnow()
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    if str(payload.get("role", "")).strip() not in KNOWN_ROLES:
        raise ValueError("Session token missing role.")

    return payload
