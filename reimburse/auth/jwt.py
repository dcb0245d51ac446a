"""JWT token management for the HTTP layer.

Design Decisions:
- Algorithm and secret come from WorkflowSettings (JWT_ALGORITHM, JWT_SECRET)
- Expiry: ACCESS_TOKEN_EXPIRE_HOURS (24 by default)
- Claims: sub (user_id), role, exp, optional name
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from reimburse.models.user import UserRole
from reimburse.services.config_service import get_settings


class TokenData(BaseModel):
    """Data extracted from a verified token."""
    user_id: str
    role: UserRole
    name: Optional[str] = None


def create_access_token(
    user_id: str,
    role: UserRole,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token.

    Args:
        user_id: Subject of the token
        role: User role claim
        name: Optional display name
        expires_delta: Token lifetime. If None, uses the configured default

    Returns:
        JWT token as string
    """
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(hours=settings.access_token_expire_hours)

    expire = datetime.now(timezone.utc) + expires_delta
    role_str = role.value if isinstance(role, UserRole) else role

    to_encode = {
        "sub": str(user_id),
        "role": role_str,
        "exp": expire,
    }
    if name:
        to_encode["name"] = name

    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> Optional[TokenData]:
    """Verify a token and extract its claims.

    Returns:
        TokenData if token is valid, None if invalid/expired

    Example:
        >>> token = create_access_token("u1", UserRole.REVIEWER)
        >>> verify_access_token(token).user_id
        'u1'
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])

        user_id: str = payload.get("sub")
        role_str: str = payload.get("role")
        if not user_id or not role_str:
            return None

        return TokenData(user_id=user_id, role=UserRole(role_str), name=payload.get("name"))
    except (JWTError, ValueError):
        return None
