"""
Collaborator contracts for the session controller.

The controller depends on these protocols, not on Supabase or Redis
directly.
"""

from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from village.domain.schemas import AuthSession, AuthUser, ProfileRecord, UserRole

AuthStateListener = Callable[[str, Optional[AuthSession]], None]


@runtime_checkable
class IAuthGateway(Protocol):
    """
    Hosted identity provider.

    Raises:
        SupabaseError (or another ExternalServiceError) when a call fails
    """

    async def get_session(self) -> Optional[AuthSession]:
        ...

    async def get_user(self) -> Optional[AuthUser]:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> Optional[AuthSession]:
        ...

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> Optional[AuthUser]:
        ...

    async def sign_out(self) -> None:
        ...

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        ...

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]:
        """
        Subscribe to auth state changes.

        Args:
            listener: Called with (event name, session or None)

        Returns:
            Zero-argument unsubscribe callable
        """
        ...


@runtime_checkable
class IProfileStore(Protocol):
    """Point reads and writes on the profiles table keyed by user id."""

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        """Return the profile, or None when no row exists."""
        ...

    async def get_role(self, user_id: str) -> Optional[UserRole]:
        ...

    async def ensure_profile(self, user_id: str, role: UserRole) -> ProfileRecord:
        ...

    async def update_profile(self, user_id: str, updates: Dict[str, Any]) -> ProfileRecord:
        ...

    async def has_feature_upvote(self, feature_id: str, user_id: str) -> bool:
        ...

    async def add_feature_upvote(self, feature_id: str, user_id: str) -> None:
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Flat string-keyed store that outlives the controller instance."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> bool:
        ...

    def delete(self, key: str) -> bool:
        ...


@runtime_checkable
class Router(Protocol):
    """Downstream navigation primitive."""

    @property
    def current_path(self) -> str:
        ...

    def push(self, path: str, replace: bool = False) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Transient user-facing notifications."""

    def success(self, message: str) -> None:
        ...

    def info(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...
