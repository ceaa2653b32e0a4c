import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog  # type: ignore[import-not-found]
from pybreaker import CircuitBreaker, CircuitBreakerError  # type: ignore[import-not-found]

import supabase  # type: ignore[import-not-found]

from village.core.config import settings
from village.core.exceptions import ProfileNotFoundError, SupabaseError
from village.domain.schemas import AuthSession, AuthUser, ProfileRecord, UserRole
from village.services.auth.interfaces import AuthStateListener

logger = structlog.get_logger()

# Circuit breaker shared by every Supabase call from this process.
# An abandoned call is not a Supabase failure.
supabase_breaker = CircuitBreaker(
    fail_max=settings.supabase_breaker_fail_max,
    reset_timeout=settings.supabase_breaker_reset_timeout,
    exclude=[asyncio.CancelledError],
)

PROFILE_COLUMNS = "id, full_name, role, avatar_url"


async def create_supabase_client() -> Any:
    """
    Create an async Supabase client with the anon key.

    Row level security applies: the client only sees what the signed-in
    user may see.
    """
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise RuntimeError(
            "Supabase configuration missing. "
            "Set SUPABASE_URL and SUPABASE_ANON_KEY environment variables."
        )
    return await supabase.acreate_client(settings.supabase_url, settings.supabase_anon_key)


def _field(raw: Any, name: str, default: Any = None) -> Any:
    if raw is None:
        return default
    if isinstance(raw, dict):
        return raw.get(name, default)
    return getattr(raw, name, default)


def to_auth_user(raw: Any) -> Optional[AuthUser]:
    """Convert a gotrue User (or dict) into an AuthUser."""
    user_id = _field(raw, "id")
    if not user_id:
        return None
    return AuthUser(
        id=str(user_id),
        email=_field(raw, "email"),
        user_metadata=_field(raw, "user_metadata") or {},
    )


def to_auth_session(raw: Any) -> Optional[AuthSession]:
    """Convert a gotrue Session (or dict) into an AuthSession."""
    access_token = _field(raw, "access_token")
    user = to_auth_user(_field(raw, "user"))
    if not access_token or user is None:
        return None
    return AuthSession(
        access_token=access_token,
        refresh_token=_field(raw, "refresh_token"),
        expires_at=_field(raw, "expires_at"),
        user=user,
    )


class _SupabaseAdapter:
    def __init__(self, client: Any):
        self.client = client

    async def _call(
        self, operation: str, func: Callable[..., Awaitable[Any]], *args, **kwargs
    ) -> Any:
        """Await a Supabase call inside the circuit breaker, normalising failures."""
        try:
            with supabase_breaker.calling():
                return await func(*args, **kwargs)
        except CircuitBreakerError as e:
            logger.error("supabase_circuit_open", operation=operation)
            raise SupabaseError(f"Supabase unavailable during {operation}") from e
        except SupabaseError:
            raise
        except Exception as e:
            logger.error(
                "supabase_call_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SupabaseError(f"Supabase {operation} failed: {str(e)}") from e


class SupabaseAuthGateway(_SupabaseAdapter):
    """Supabase Auth as the session controller's auth gateway."""

    async def get_session(self) -> Optional[AuthSession]:
        raw = await self._call("get_session", self.client.auth.get_session)
        return to_auth_session(raw)

    async def get_user(self) -> Optional[AuthUser]:
        response = await self._call("get_user", self.client.auth.get_user)
        return to_auth_user(_field(response, "user"))

    async def sign_in_with_password(self, email: str, password: str) -> Optional[AuthSession]:
        response = await self._call(
            "sign_in_with_password",
            self.client.auth.sign_in_with_password,
            {"email": email, "password": password},
        )
        session = to_auth_session(_field(response, "session"))
        logger.info("user_signin_success", user_id=session.user_id if session else None)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> Optional[AuthUser]:
        response = await self._call(
            "sign_up",
            self.client.auth.sign_up,
            {"email": email, "password": password, "options": {"data": metadata}},
        )
        user = to_auth_user(_field(response, "user"))
        logger.info("user_signup_success", user_id=user.id if user else None)
        return user

    async def sign_out(self) -> None:
        await self._call("sign_out", self.client.auth.sign_out)
        logger.info("user_signout_supabase_success")

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._call(
            "reset_password_for_email",
            self.client.auth.reset_password_for_email,
            email,
            {"redirect_to": redirect_to},
        )
        logger.info("password_reset_requested", redirect_to=redirect_to)

    def on_auth_state_change(self, listener: AuthStateListener) -> Callable[[], None]:
        def callback(event: Any, raw_session: Any) -> None:
            listener(str(event), to_auth_session(raw_session))

        subscription = self.client.auth.on_auth_state_change(callback)
        logger.info("auth_state_subscription_started")

        def unsubscribe() -> None:
            subscription.unsubscribe()
            logger.info("auth_state_subscription_stopped")

        return unsubscribe


class SupabaseProfileStore(_SupabaseAdapter):
    """profiles and feature_upvotes tables."""

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        response = await self._call(
            "get_profile",
            lambda: self.client.table("profiles")
            .select(PROFILE_COLUMNS)
            .eq("id", user_id)
            .maybe_single()
            .execute(),
        )
        # maybe_single() yields no response at all for a missing row on some client versions
        data = _field(response, "data")
        if not data:
            return None
        return ProfileRecord(**data)

    async def get_role(self, user_id: str) -> Optional[UserRole]:
        profile = await self.get_profile(user_id)
        return profile.user_role if profile else None

    async def ensure_profile(self, user_id: str, role: UserRole) -> ProfileRecord:
        existing = await self.get_profile(user_id)
        if existing:
            return existing

        response = await self._call(
            "create_profile",
            lambda: self.client.table("profiles")
            .insert({"id": user_id, "role": role.value})
            .execute(),
        )
        logger.info("profile_created", user_id=user_id, role=role.value)
        rows = _field(response, "data") or []
        if rows:
            return ProfileRecord(**rows[0])
        return ProfileRecord(id=user_id, role=role.value)

    async def update_profile(self, user_id: str, updates: Dict[str, Any]) -> ProfileRecord:
        """Update a profile by id. Raises ProfileNotFoundError if no row matched."""
        response = await self._call(
            "update_profile",
            lambda: self.client.table("profiles").update(updates).eq("id", user_id).execute(),
        )
        rows = _field(response, "data") or []
        if not rows:
            raise ProfileNotFoundError(f"Profile not found for user: {user_id}")
        logger.info("profile_updated", user_id=user_id, updates=list(updates.keys()))
        return ProfileRecord(**rows[0])

    async def has_feature_upvote(self, feature_id: str, user_id: str) -> bool:
        response = await self._call(
            "check_feature_upvote",
            lambda: self.client.table("feature_upvotes")
            .select("id")
            .eq("feature_id", feature_id)
            .eq("user_id", user_id)
            .maybe_single()
            .execute(),
        )
        return bool(_field(response, "data"))

    async def add_feature_upvote(self, feature_id: str, user_id: str) -> None:
        await self._call(
            "add_feature_upvote",
            lambda: self.client.table("feature_upvotes")
            .insert({"feature_id": feature_id, "user_id": user_id})
            .execute(),
        )
        logger.info("feature_upvote_added", feature_id=feature_id, user_id=user_id)
