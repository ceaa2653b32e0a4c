"""
Shared fixtures for session controller tests.

Fakes stand in for Supabase Auth, the profiles table and the browser
router; the ledger runs on the in-memory store.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from village.core.exceptions import ProfileNotFoundError
from village.core.retry import RetryHelper
from village.domain.schemas import AuthSession, AuthUser, ProfileRecord, UserRole
from village.infrastructure.redis_client import MemoryKeyValueStore
from village.services.auth.ledger import PendingActionLedger
from village.services.auth.navigation import HistoryRouter, LogNotifier, NavigationGuard
from village.services.auth.session_controller import SessionController


async def no_sleep(seconds: float) -> None:
    return None


async def _block_forever() -> None:
    await asyncio.Event().wait()


class FakeAuthGateway:
    """In-memory auth gateway. emit() plays the provider's event stream."""

    def __init__(self, session: Optional[AuthSession] = None):
        self.session = session
        self.listener: Optional[Callable[[str, Optional[AuthSession]], None]] = None
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.failures: Dict[str, Exception] = {}
        self.hang: Set[str] = set()
        self.emit_on_sign_out = True

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.hang:
            await _block_forever()
        if name in self.failures:
            raise self.failures[name]

    def call_count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)

    def emit(self, event: str, session: Optional[AuthSession] = None) -> None:
        if self.listener is not None:
            self.listener(event, session)

    async def get_session(self) -> Optional[AuthSession]:
        await self._enter("get_session")
        return self.session

    async def get_user(self) -> Optional[AuthUser]:
        await self._enter("get_user")
        return self.session.user if self.session else None

    async def sign_in_with_password(self, email: str, password: str) -> Optional[AuthSession]:
        await self._enter("sign_in_with_password", email)
        return self.session

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[AuthUser]:
        await self._enter("sign_up", email, metadata)
        return AuthUser(id="new-user", email=email, user_metadata=metadata)

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        self.session = None
        if self.emit_on_sign_out:
            self.emit("SIGNED_OUT", None)

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._enter("reset_password_for_email", email, redirect_to)

    def on_auth_state_change(self, listener):
        self.listener = listener

        def unsubscribe() -> None:
            self.listener = None

        return unsubscribe


class FakeProfileStore:
    """profiles and feature_upvotes tables held in dicts."""

    def __init__(self):
        self.profiles: Dict[str, ProfileRecord] = {}
        self.upvotes: Set[Tuple[str, str]] = set()
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self.hang: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.hang:
            await _block_forever()
        if self.gate is not None and name == "get_profile":
            await self.gate.wait()
        if name in self.failures:
            raise self.failures[name]

    def add_profile(self, user_id: str, full_name: Optional[str] = "Ada Lovelace", role: Optional[str] = None):
        self.profiles[user_id] = ProfileRecord(id=user_id, full_name=full_name, role=role)

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        await self._enter("get_profile")
        return self.profiles.get(user_id)

    async def get_role(self, user_id: str) -> Optional[UserRole]:
        await self._enter("get_role")
        profile = self.profiles.get(user_id)
        return profile.user_role if profile else None

    async def ensure_profile(self, user_id: str, role: UserRole) -> ProfileRecord:
        await self._enter("ensure_profile")
        if user_id not in self.profiles:
            self.profiles[user_id] = ProfileRecord(id=user_id, role=role.value)
        return self.profiles[user_id]

    async def update_profile(self, user_id: str, updates: Dict[str, Any]) -> ProfileRecord:
        await self._enter("update_profile")
        if user_id not in self.profiles:
            raise ProfileNotFoundError(f"Profile not found for user: {user_id}")
        self.profiles[user_id] = self.profiles[user_id].model_copy(update=updates)
        return self.profiles[user_id]

    async def has_feature_upvote(self, feature_id: str, user_id: str) -> bool:
        await self._enter("has_feature_upvote")
        return (feature_id, user_id) in self.upvotes

    async def add_feature_upvote(self, feature_id: str, user_id: str) -> None:
        await self._enter("add_feature_upvote")
        self.upvotes.add((feature_id, user_id))


@pytest.fixture
def make_session():
    """Factory for sessions; role lands in user metadata when given."""

    def _make(user_id: str = "user-1", role: Optional[str] = None, email: str = "ada@example.com"):
        metadata = {"role": role} if role else {}
        return AuthSession(
            access_token=f"token-{user_id}",
            refresh_token="refresh",
            user=AuthUser(id=user_id, email=email, user_metadata=metadata),
        )

    return _make


@pytest.fixture
def gateway():
    return FakeAuthGateway()


@pytest.fixture
def profile_store():
    return FakeProfileStore()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def ledger(store):
    return PendingActionLedger(store)


@pytest.fixture
def router():
    return HistoryRouter("/")


@pytest.fixture
def notifier():
    return LogNotifier()


@pytest.fixture
def retry():
    return RetryHelper(max_attempts=3, backoff_step=0, backoff_max=0, sleep=no_sleep)


@pytest.fixture
def controller_factory(gateway, profile_store, ledger, router, notifier, retry):
    def _build(loading_timeout: float = 5.0) -> SessionController:
        return SessionController(
            gateway=gateway,
            profile_store=profile_store,
            ledger=ledger,
            router=router,
            notifier=notifier,
            retry=retry,
            loading_timeout=loading_timeout,
            navigation=NavigationGuard(router, cooldown_seconds=0),
        )

    return _build


@pytest.fixture
def controller(controller_factory):
    return controller_factory()
