"""
Session and redirection controller.

Keeps the single in-memory view of the signed-in user (session, user,
role, profile completeness, loading) in step with the auth gateway's event
stream, decides where the user goes once loading settles, and replays
actions the user attempted before being sent to sign in.

Nothing here raises into callers: every async entry point catches, logs,
turns the failure into a notice and leaves loading cleared.
"""

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional, Set, Tuple

import structlog

from village.core.config import settings
from village.core.exceptions import InvalidSessionPayloadError
from village.core.retry import RetryHelper
from village.domain.schemas import (
    AuthEvent,
    AuthSession,
    AuthUser,
    RedirectKind,
    SessionSnapshot,
    UserRole,
)
from village.services.auth.interfaces import IAuthGateway, IProfileStore, Notifier, Router
from village.services.auth.ledger import LedgerSlot, PendingActionLedger
from village.services.auth.navigation import NavigationGuard, show_notice
from village.services.auth.redirect_policy import AUTH_ROUTE, HOME_ROUTE, decide_redirect
from village.services.auth.watchdog import LoadingWatchdog
from village.state_machines.session_flow import SessionFlowMachine

logger = structlog.get_logger(__name__)

SIGNED_IN_MESSAGE = "You have successfully logged in!"
SIGNED_OUT_MESSAGE = "You have been signed out successfully"
SESSION_TIMEOUT_MESSAGE = "Loading your session is taking too long. Please try again."
GENERIC_TIMEOUT_MESSAGE = "The operation timed out. Please try again."
VOTE_RECORDED_MESSAGE = "Your vote has been recorded!"
VOTE_EXISTS_MESSAGE = "You have already voted for this feature"
VOTE_FAILED_MESSAGE = "Failed to process your vote"


class SessionController:
    """
    Authentication state plus the actions built on it.

    Derived state: session, user, user_role, is_profile_complete, is_loading.
    Actions: sign_in, sign_up, sign_out, require_auth, update_profile,
    request_password_reset, process_pending_upvote.

    Lifecycle: start() subscribes to the gateway and loads the current
    session; dispose() unsubscribes and cancels every timer and task.
    """

    def __init__(
        self,
        gateway: IAuthGateway,
        profile_store: IProfileStore,
        ledger: PendingActionLedger,
        router: Router,
        notifier: Notifier,
        retry: Optional[RetryHelper] = None,
        loading_timeout: Optional[float] = None,
        navigation: Optional[NavigationGuard] = None,
        close_store: bool = False,
    ):
        self.gateway = gateway
        self.profile_store = profile_store
        self.ledger = ledger
        self.notifier = notifier
        self.navigation = navigation or NavigationGuard(router)
        self.retry = retry or RetryHelper()
        self.watchdog = LoadingWatchdog(self._on_loading_timeout, timeout_seconds=loading_timeout)
        self.machine = SessionFlowMachine(watchdog=self.watchdog)

        self._snapshot = SessionSnapshot()
        self._resolving: Optional[AuthSession] = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional["asyncio.Queue[Tuple[str, Optional[AuthSession]]]"] = None
        self._worker: Optional[asyncio.Task] = None
        self._unsubscribe = None
        self._background: Set[asyncio.Task] = set()
        # Task holding the lock, and the task awaiting the gateway sign-out
        self._active_task: Optional[asyncio.Task] = None
        self._sign_out_task: Optional[asyncio.Task] = None
        # Set when the ledger store was built for this controller
        self._close_store = close_store

        self._has_redirected = False
        self._sign_in_notified = False
        self._sign_out_finalized = True

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def session(self) -> Optional[AuthSession]:
        return self._snapshot.session

    @property
    def user(self) -> Optional[AuthUser]:
        return self._snapshot.user

    @property
    def user_role(self) -> Optional[UserRole]:
        return self._snapshot.role

    @property
    def is_profile_complete(self) -> bool:
        return self._snapshot.profile_complete

    @property
    def is_loading(self) -> bool:
        return self.machine.is_busy

    @property
    def state(self) -> str:
        return self.machine.state_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to auth changes and load the current session."""
        if self._worker is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_events())
        try:
            self._unsubscribe = self.gateway.on_auth_state_change(self._enqueue_event)
        except Exception as e:
            logger.error("auth_subscription_failed", error=str(e), error_type=type(e).__name__)

        await self.initialize()

    async def dispose(self) -> None:
        """Unsubscribe and cancel the worker, background tasks and watchdog."""
        self._next_generation()

        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception as e:
                logger.warning("auth_unsubscribe_failed", error=str(e))
            self._unsubscribe = None

        tasks = list(self._background)
        for task in (self._active_task, self._sign_out_task):
            if task is not None and task is not asyncio.current_task():
                tasks.append(task)
        if self._worker is not None:
            tasks.append(self._worker)
            self._worker = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._background.clear()

        self.watchdog.cancel()
        if self._close_store:
            self._disconnect_store()
        logger.info("session_controller_disposed")

    def _disconnect_store(self) -> None:
        disconnect = getattr(self.ledger.store, "disconnect", None)
        if disconnect is None:
            return
        try:
            disconnect()
        except Exception as e:
            logger.warning("ledger_store_disconnect_failed", error=str(e))
        self._close_store = False

    async def wait_until_idle(self) -> None:
        """Wait until every queued gateway event has been handled."""
        # Let call_soon_threadsafe deliveries land in the queue first
        await asyncio.sleep(0)
        if self._events is not None:
            await self._events.join()

    def _enqueue_event(self, event: str, session: Optional[AuthSession]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self._events is None:
            logger.warning("auth_event_dropped", auth_event=str(event), reason="not_started")
            return
        loop.call_soon_threadsafe(self._events.put_nowait, (event, session))

    async def _process_events(self) -> None:
        assert self._events is not None
        while True:
            event, session = await self._events.get()
            try:
                await self.handle_auth_event(event, session)
            except Exception as e:
                logger.error(
                    "auth_event_handler_crashed",
                    auth_event=str(event),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._events.task_done()

    async def _run_abandonable(self, coro: Awaitable[Any]) -> None:
        """
        Run coro in its own task and wait for it.

        The watchdog or a sign-out may cancel that task; the caller then
        returns normally instead of being cancelled with it.
        """
        task = asyncio.ensure_future(coro)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not task.cancelled():
            task.result()

    @contextlib.asynccontextmanager
    async def _exclusive(self):
        async with self._lock:
            self._active_task = asyncio.current_task()
            try:
                yield
            finally:
                if self._active_task is asyncio.current_task():
                    self._active_task = None

    def _abandon(self, task: Optional[asyncio.Task], reason: str) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        logger.warning("operation_abandoned", reason=reason)

    # ------------------------------------------------------------------
    # Session state machine
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _begin_loading(self, session: Optional[AuthSession]) -> bool:
        if self.machine.in_state("signing_out"):
            logger.info("loading_skipped_during_sign_out")
            return False
        self._resolving = session
        self.machine.begin_loading()
        return True

    def _settle(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        self._resolving = None
        if self.machine.in_state("loading"):
            self.machine.settle()

    def _commit(self, snapshot: SessionSnapshot) -> None:
        self._snapshot = snapshot
        user_id = snapshot.user.id if snapshot.user else None
        self.machine.context["user_id"] = user_id
        self.machine.user_id = user_id
        if snapshot.user is not None:
            self.ledger.record_auth_state(snapshot.user)

    def _clear_local_state(self) -> None:
        self._snapshot = SessionSnapshot()
        self._resolving = None
        self.machine.context["user_id"] = None
        self.machine.user_id = None
        self._has_redirected = False
        self._sign_in_notified = False

    async def _resolve_role(self, user: AuthUser) -> Optional[UserRole]:
        current = self._snapshot
        if current.user is not None and current.user.id == user.id and current.role is not None:
            return current.role

        embedded = user.embedded_role
        if embedded is not None:
            return embedded

        return await self.retry.run(
            "get_user_role", lambda: self.profile_store.get_role(user.id)
        )

    async def _resolve_profile_complete(self, user_id: str) -> bool:
        profile = await self.retry.run(
            "get_profile", lambda: self.profile_store.get_profile(user_id)
        )
        return bool(profile and profile.is_complete)

    async def _resolve_snapshot(self, session: AuthSession) -> SessionSnapshot:
        role = await self._resolve_role(session.user)
        profile_complete = await self._resolve_profile_complete(session.user.id)
        return SessionSnapshot(
            session=session,
            user=session.user,
            role=role,
            profile_complete=profile_complete,
        )

    def _cleanup_previous_mount(self) -> None:
        if self.ledger.has(LedgerSlot.AUTH_ERROR):
            logger.warning("previous_auth_error_cleared", auth_event=self.ledger.get(LedgerSlot.AUTH_ERROR))
            self.ledger.clear(LedgerSlot.AUTH_ERROR)

        recovery = self.ledger.get_json(LedgerSlot.AUTH_TIMEOUT_RECOVERY)
        if recovery:
            logger.warning("recovering_from_auth_timeout", recovery=recovery)
            self.ledger.clear(LedgerSlot.AUTH_TIMEOUT_RECOVERY)

    async def initialize(self) -> None:
        """Fetch the current session once and settle."""
        await self._run_abandonable(self._initialize())

    async def _initialize(self) -> None:
        async with self._exclusive():
            generation = self._next_generation()
            self._cleanup_previous_mount()
            if not self._begin_loading(None):
                return

            try:
                session = await self.gateway.get_session()
                if not self._is_current(generation):
                    return
                if session is not None and session.is_expired():
                    logger.info("stored_session_expired", user_id=session.user_id)
                    session = None
                self._resolving = session
                snapshot = await self._resolve_snapshot(session) if session else SessionSnapshot()
                if not self._is_current(generation):
                    logger.info("stale_session_result_discarded", operation="initialize")
                    return
                self._commit(snapshot)
                logger.info(
                    "session_initialized",
                    user_id=snapshot.user.id if snapshot.user else None,
                    role=snapshot.role.value if snapshot.role else None,
                    profile_complete=snapshot.profile_complete,
                )
            except Exception as e:
                logger.error(
                    "session_initialize_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._settle(generation)

            if self._is_current(generation) and self.user is not None:
                await self._maybe_redirect(generation)

    async def handle_auth_event(self, event: Any, session: Optional[AuthSession] = None) -> None:
        """
        Apply one gateway event. Events are handled one at a time.

        Args:
            event: Event name from the gateway (unknown names are tolerated)
            session: Session delivered with the event, if any
        """
        await self._run_abandonable(self._handle_auth_event(event, session))

    async def _handle_auth_event(self, event: Any, session: Optional[AuthSession]) -> None:
        async with self._exclusive():
            generation = self._next_generation()
            parsed = AuthEvent.parse(event)
            logger.info(
                "auth_state_changed",
                auth_event=str(event),
                has_session=session is not None,
                state=self.state,
            )

            redirect = False
            first_sign_in = False
            try:
                if parsed in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED):
                    redirect, first_sign_in = await self._on_signed_in(parsed, session, generation)
                elif parsed is AuthEvent.SIGNED_OUT:
                    self._on_signed_out()
                elif parsed is AuthEvent.USER_UPDATED:
                    await self._on_user_updated(session, generation)
                else:
                    logger.debug("auth_event_ignored", auth_event=str(event))
            except Exception as e:
                logger.error(
                    "auth_state_change_failed",
                    auth_event=str(event),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.ledger.set(LedgerSlot.AUTH_ERROR, str(event))
            finally:
                self._settle(generation)

            if not self._is_current(generation):
                return
            if redirect:
                await self._maybe_redirect(generation)
            if first_sign_in:
                self.notifier.success(SIGNED_IN_MESSAGE)

    async def _on_signed_in(
        self, event: AuthEvent, session: Optional[AuthSession], generation: int
    ) -> Tuple[bool, bool]:
        if session is None:
            raise InvalidSessionPayloadError(event.value)

        first_sign_in = event is AuthEvent.SIGNED_IN and not self._sign_in_notified
        if not self._begin_loading(session):
            return False, False

        snapshot = await self._resolve_snapshot(session)
        if not self._is_current(generation):
            logger.info("stale_session_result_discarded", operation=event.value)
            return False, False

        self._commit(snapshot)
        logger.info(
            "session_established",
            auth_event=event.value,
            user_id=snapshot.user.id if snapshot.user else None,
            role=snapshot.role.value if snapshot.role else None,
            profile_complete=snapshot.profile_complete,
        )

        if first_sign_in:
            self._sign_in_notified = True
            promoted = self.ledger.promote_registering_role()
            if promoted:
                logger.info("intended_role_recorded", role=promoted.value)
        return True, first_sign_in

    def _on_signed_out(self) -> None:
        explicit = self.machine.in_state("signing_out")
        self._clear_local_state()
        self.ledger.clear_all()

        if explicit:
            self._finish_sign_out()
            return

        # Expired or revoked elsewhere: views decide where to go
        logger.info("external_sign_out")
        self._begin_loading(None)

    async def _on_user_updated(self, session: Optional[AuthSession], generation: int) -> None:
        session = session or self.session
        if session is None:
            return
        if not self._begin_loading(session):
            return

        role = await self._resolve_role(session.user)
        if not self._is_current(generation):
            return
        self._commit(
            SessionSnapshot(
                session=session,
                user=session.user,
                role=role,
                profile_complete=self._snapshot.profile_complete,
            )
        )

    def _on_loading_timeout(self, operation: str) -> None:
        # Late results of the timed-out operation must not be applied
        generation = self._next_generation()

        if self.machine.in_state("signing_out"):
            self._abandon(self._sign_out_task, "sign_out_timeout")
            self._clear_local_state()
            self.ledger.clear_all()
            self._finish_sign_out()
            self._spawn(self._sign_out_in_background())
            return

        stuck_session = self._resolving or self.session
        if stuck_session is not None:
            self.ledger.set_json(
                LedgerSlot.AUTH_TIMEOUT_RECOVERY,
                {
                    "user_id": stuck_session.user_id,
                    "operation": operation,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
            self.notifier.error(SESSION_TIMEOUT_MESSAGE)
        else:
            self.notifier.error(GENERIC_TIMEOUT_MESSAGE)

        self._abandon(self._active_task, "loading_timeout")
        self._settle(generation)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _sign_out_in_background(self) -> None:
        try:
            await self.gateway.sign_out()
        except Exception as e:
            logger.warning("background_sign_out_failed", error=str(e))

    # ------------------------------------------------------------------
    # Redirection
    # ------------------------------------------------------------------

    async def _maybe_redirect(self, generation: int) -> None:
        if self.user is None or self.is_loading:
            return
        if self._has_redirected and self.navigation.current_path != AUTH_ROUTE:
            return

        self._has_redirected = True
        try:
            await self._apply_redirect(generation)
        except Exception as e:
            logger.error("redirect_failed", error=str(e), error_type=type(e).__name__)

    async def _apply_redirect(self, generation: int) -> None:
        user = self.user
        assert user is not None

        role = self._snapshot.role
        if role is None and user.embedded_role is not None:
            role = user.embedded_role
            self._snapshot = self._snapshot.model_copy(update={"role": role})

        pending = self.ledger.pending()
        decision = decide_redirect(
            user,
            role,
            self._snapshot.profile_complete,
            pending,
            self.ledger.intended_role(),
        )
        logger.info(
            "redirect_decided",
            user_id=user.id,
            kind=decision.kind.value,
            path=decision.intent.path,
            pending_action=pending.has_pending_action,
        )

        if decision.kind is RedirectKind.FEATURE_UPVOTE:
            await self.process_pending_upvote(decision.feature_id)
            if not self._is_current(generation):
                return
        elif decision.consume_slot:
            self.ledger.clear(LedgerSlot(decision.consume_slot))
        elif decision.kind is RedirectKind.DASHBOARD:
            self.ledger.clear_many(
                (LedgerSlot.LAST_ACTION, LedgerSlot.LAST_PATH, LedgerSlot.PENDING_FEATURE_ID)
            )

        self.navigation.follow(decision.intent)
        show_notice(self.notifier, decision.notice)

    async def process_pending_upvote(self, feature_id: Optional[str] = None) -> bool:
        """
        Record the feature upvote the user attempted before signing in.

        Create-if-absent per (feature, user). feature_id defaults to the
        pending slot. The pending slot is cleared once the vote exists; on
        failure it stays for the next sign-in.
        """
        feature_id = feature_id or self.ledger.get(LedgerSlot.PENDING_FEATURE_UPVOTE)
        user = self.user
        if not feature_id or user is None:
            return False

        try:
            if await self.profile_store.has_feature_upvote(feature_id, user.id):
                self.notifier.info(VOTE_EXISTS_MESSAGE)
            else:
                await self.profile_store.add_feature_upvote(feature_id, user.id)
                self.notifier.success(VOTE_RECORDED_MESSAGE)
        except Exception as e:
            logger.error(
                "pending_upvote_failed",
                feature_id=feature_id,
                user_id=user.id,
                error=str(e),
            )
            self.notifier.error(VOTE_FAILED_MESSAGE)
            return False

        self.ledger.clear_many((LedgerSlot.PENDING_FEATURE_UPVOTE, LedgerSlot.PENDING_FEATURE_ID))
        return True

    # ------------------------------------------------------------------
    # Gated actions
    # ------------------------------------------------------------------

    def require_auth(self, action: str, redirect_path: Optional[str] = None) -> bool:
        """
        Gate a privileged action.

        Returns True when a user is signed in. Otherwise remembers the
        action for replay after sign-in, tells the user, sends them to the
        auth page and returns False.
        """
        if self.user is not None:
            return True

        path = redirect_path or self.navigation.current_path
        self.ledger.record_gated_action(action, path)
        self.notifier.error(f"Please sign in to {action}")
        self.navigation.navigate(AUTH_ROUTE, skip_checks=True)
        return False

    def remember_path(self, path: str) -> None:
        self.ledger.set(LedgerSlot.LAST_PATH, path)

    def remember_feature_for_upvote(self, feature_id: str) -> None:
        self.ledger.set(LedgerSlot.PENDING_FEATURE_ID, feature_id)

    def clear_last_action(self) -> None:
        self.ledger.clear_actions()

    # ------------------------------------------------------------------
    # Account actions
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> bool:
        """Sign in with email and password. The gateway's SIGNED_IN event does the rest."""
        try:
            session = await self.gateway.sign_in_with_password(email, password)
        except Exception as e:
            logger.warning("sign_in_failed", error=str(e), error_type=type(e).__name__)
            self.notifier.error("Sign in failed. Please check your email and password.")
            return False

        if session is None:
            self.notifier.error("Sign in failed. Please check your email and password.")
            return False
        return True

    async def sign_up(
        self,
        email: str,
        password: str,
        role: Any,
        full_name: Optional[str] = None,
    ) -> bool:
        """Create an account with its role embedded in user metadata."""
        parsed_role = UserRole.parse(role)
        if parsed_role is None:
            self.notifier.error("Please choose a valid role")
            return False

        metadata: Dict[str, Any] = {"role": parsed_role.value}
        if full_name:
            metadata["full_name"] = full_name

        self.ledger.set(LedgerSlot.REGISTERING_AS, parsed_role.value)
        try:
            await self.gateway.sign_up(email, password, metadata)
        except Exception as e:
            logger.warning("sign_up_failed", role=parsed_role.value, error=str(e))
            self.ledger.clear(LedgerSlot.REGISTERING_AS)
            self.notifier.error("Registration failed. Please try again.")
            return False

        self.notifier.success(
            "Registration successful! Please check your email to verify your account."
        )
        return True

    async def request_password_reset(self, email: str) -> bool:
        try:
            await self.gateway.reset_password_for_email(
                email, settings.password_reset_redirect_url
            )
        except Exception as e:
            logger.warning("password_reset_request_failed", error=str(e))
            self.notifier.error("Could not send the password reset email. Please try again.")
            return False

        self.notifier.info("Check your email for a link to reset your password")
        return True

    async def update_profile(self, updates: Dict[str, Any]) -> bool:
        """Write profile fields and recompute profile completeness."""
        user = self.user
        if user is None:
            return self.require_auth("update profile")

        try:
            await self.profile_store.ensure_profile(user.id, self.user_role or UserRole.FAMILY)
            profile = await self.profile_store.update_profile(user.id, updates)
        except Exception as e:
            logger.error("profile_update_failed", user_id=user.id, error=str(e))
            self.notifier.error("Failed to update your profile")
            return False

        if self.user is not None and self.user.id == user.id:
            self._snapshot = self._snapshot.model_copy(
                update={"profile_complete": profile.is_complete}
            )
        return True

    async def refresh_profile_status(self) -> bool:
        """Re-read profile completeness for the signed-in user."""
        user = self.user
        if user is None:
            return False
        complete = await self._resolve_profile_complete(user.id)
        if self.user is not None and self.user.id == user.id:
            self._snapshot = self._snapshot.model_copy(update={"profile_complete": complete})
        return complete

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    async def sign_out(self) -> None:
        """
        Sign out. Local state is cleared before the gateway call, so the
        user is signed out locally even when the network call fails.
        """
        if self.machine.in_state("signing_out"):
            logger.info("sign_out_already_in_progress")
            return

        self._next_generation()
        self._sign_out_finalized = False
        # A lookup still in flight belongs to the session being ended
        self._abandon(self._active_task, "sign_out")
        try:
            self.machine.begin_sign_out()
            self._clear_local_state()
            self.ledger.clear_all()
        except Exception as e:
            logger.error("sign_out_failed", error=str(e), error_type=type(e).__name__)
            self._force_signed_out()
            return

        await self._run_abandonable(self._sign_out_remote())

    async def _sign_out_remote(self) -> None:
        self._sign_out_task = asyncio.current_task()
        try:
            try:
                await self.gateway.sign_out()
            except Exception as e:
                logger.error("sign_out_gateway_failed", error=str(e), error_type=type(e).__name__)

            self._finish_sign_out()
        except Exception as e:
            logger.error("sign_out_failed", error=str(e), error_type=type(e).__name__)
            self._force_signed_out()
        finally:
            if self._sign_out_task is asyncio.current_task():
                self._sign_out_task = None

    def _finish_sign_out(self) -> None:
        """Navigate home, confirm and leave signing_out. Runs once per sign-out."""
        if self._sign_out_finalized:
            return
        self.navigation.navigate(HOME_ROUTE, skip_checks=True)
        self.notifier.success(SIGNED_OUT_MESSAGE)
        self._sign_out_finalized = True
        if self.machine.in_state("signing_out"):
            self.machine.finish_sign_out()
        logger.info("sign_out_completed")

    def _force_signed_out(self) -> None:
        self._clear_local_state()
        try:
            self.ledger.clear_all()
        except Exception as e:
            logger.error("ledger_clear_failed", error=str(e))

        try:
            self._finish_sign_out()
        except Exception as e:
            logger.error("sign_out_navigation_failed", error=str(e))
            self._sign_out_finalized = True

        if self.machine.in_state("signing_out"):
            self.machine.finish_sign_out()
        elif self.machine.in_state("uninitialized", "loading"):
            if self.machine.in_state("uninitialized"):
                self.machine.begin_loading()
            self.machine.settle()


async def build_session_controller(
    router: Router,
    notifier: Notifier,
    gateway: Optional[IAuthGateway] = None,
    profile_store: Optional[IProfileStore] = None,
    store: Optional[Any] = None,
) -> SessionController:
    """Wire the controller to Supabase and the configured ledger backend."""
    from village.infrastructure.redis_client import create_key_value_store
    from village.infrastructure.supabase_client import (
        SupabaseAuthGateway,
        SupabaseProfileStore,
        create_supabase_client,
    )

    if gateway is None or profile_store is None:
        client = await create_supabase_client()
        gateway = gateway or SupabaseAuthGateway(client)
        profile_store = profile_store or SupabaseProfileStore(client)

    owns_store = store is None
    if owns_store:
        store = create_key_value_store()
    return SessionController(
        gateway=gateway,
        profile_store=profile_store,
        ledger=PendingActionLedger(store),
        router=router,
        notifier=notifier,
        close_store=owns_store,
    )
