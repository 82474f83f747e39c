"""Authentication dependencies for role-scoped API access."""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models.user import ROLE_BUSINESS
from services.business_clips import schedule_expiry_sweep
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    role: str
    email: Optional[str] = None


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    auth = AuthContext(
        user_id=str(payload.get("sub", "")),
        role=str(payload.get("role", "")),
        email=str(payload.get("email", "")) or None,
    )
    if auth.role == ROLE_BUSINESS:
        # Lapsed plans are expired lazily whenever a business authenticates.
        schedule_expiry_sweep(auth.user_id)
    return auth


def require_roles(*roles: str) -> Callable:
    """Return a dependency that only admits the given roles."""

    async def _dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role not in roles:
            raise HTTPException(status_code=403, detail="You do not have access to this resource.")
        return auth

    return _dependency
