"""FastAPI dependencies for identity and roles.

Usage:
    @router.post("/{request_id}/notes")
    async def add_note(current_user: User = Depends(require_reviewer)):
        ...
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reimburse.auth.identity import StaticUserProvider
from reimburse.auth.jwt import verify_access_token
from reimburse.models.user import User
from reimburse.repositories.user_repository import UserRepository
from reimburse.services.config_service import get_settings

# auto_error=False so a missing header becomes 401 (not 403) below
security = HTTPBearer(auto_error=False)

_user_repository: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    """Get or create UserRepository singleton."""
    global _user_repository
    if _user_repository is None:
        _user_repository = UserRepository(db_path=get_settings().database_path)
    return _user_repository


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    users: UserRepository = Depends(get_user_repository),
) -> User:
    """Extract and verify the current user from the bearer token.

    Raises:
        HTTPException 401: missing/invalid/expired token, unknown or inactive user
    """
    unauthorized = {"status_code": status.HTTP_401_UNAUTHORIZED, "headers": {"WWW-Authenticate": "Bearer"}}
    if credentials is None:
        raise HTTPException(detail="Not authenticated", **unauthorized)

    token_data = verify_access_token(credentials.credentials)
    if not token_data:
        raise HTTPException(detail="Invalid or expired token", **unauthorized)

    user = users.get_user_by_id(token_data.user_id)
    if not user:
        raise HTTPException(detail="User not found", **unauthorized)
    if not user.is_active:
        raise HTTPException(detail="User account is inactive", **unauthorized)

    request.state.user = user
    return user


async def require_reviewer(current_user: User = Depends(get_current_user)) -> User:
    """Only reviewers may audit receipts, add notes and change status."""
    if not current_user.is_reviewer():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reviewer role required",
        )
    return current_user


def user_provider_for(user: Optional[User]) -> StaticUserProvider:
    """Identity provider for one request's authenticated user."""
    return StaticUserProvider(user.user_id if user else None)
