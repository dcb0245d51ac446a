"""Identity provider contract for the workflow engine.

The engine never reaches for a global session; it is handed a
CurrentUserProvider and asks it for the acting user id on every mutating call.
"""

from __future__ import annotations

from typing import Optional, Protocol

from reimburse.utils.helpers.exceptions import Unauthenticated


class CurrentUserProvider(Protocol):
    """Resolves the id of the user performing the current operation."""

    def current_user_id(self) -> Optional[str]:
        ...


class StaticUserProvider:
    """Provider bound to one user id (or None for an anonymous caller).

    Used per HTTP request after the bearer token is verified, and in tests.
    """

    def __init__(self, user_id: Optional[str]):
        self.user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self.user_id


def require_actor(provider: CurrentUserProvider) -> str:
    """Return the acting user id or raise Unauthenticated."""
    user_id = provider.current_user_id()
    if not user_id:
        raise Unauthenticated()
    return user_id
