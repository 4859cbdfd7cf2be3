"""
Session Store - owns "who is signed in, with which profile" for one browser session

The store is bootstrapped once. After that the only writer of identity state is
the auth change consumer, which drains a queue filled by the backend's
subscription callback, so sign-in and sign-out effects are applied one at a
time and in delivery order.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from app.logging_setup import redact
from app.schema import (
    Identity,
    Profile,
    SessionState,
    SessionStatus,
    is_active,
    is_client,
    is_trainer,
    synthesize_profile,
)
from models.responses import AuthResult
from models.validation import ProfileUpdate, SignInCredentials, SignUpCredentials, validate

from .backends import (
    INITIAL_SESSION,
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    AuthBackend,
    BackendError,
    ProfileStore,
    Subscription,
)
from .notifications import NotificationQueue
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[SessionState], None]

DEFAULT_TIMEOUT = 10.0
LOG_EXTRA = {"component": "SessionStore"}


class SessionStore:
    """Single source of truth for the signed-in user and their profile"""

    def __init__(
        self,
        auth: AuthBackend,
        profiles: ProfileStore,
        notifications: Optional[NotificationQueue] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._auth = auth
        self._profiles = profiles
        self.notifications = notifications or NotificationQueue()
        self._rate_limiter = rate_limiter
        self._timeout = timeout

        self._state = SessionState()
        self._listeners: List[Listener] = []
        self._events: "asyncio.Queue[Tuple[str, Optional[Identity]]]" = asyncio.Queue()
        self._ready = asyncio.Event()
        self._initializing = False
        self._alive = True
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None

    # ---------- state ----------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> Optional[Identity]:
        return self._state.user

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def initialized(self) -> bool:
        return self._state.initialized

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def is_trainer(self) -> bool:
        return is_trainer(self._state.profile)

    @property
    def is_client(self) -> bool:
        return is_client(self._state.profile)

    @property
    def is_active(self) -> bool:
        return is_active(self._state.profile)

    @property
    def status(self) -> SessionStatus:
        if not self._state.initialized:
            return SessionStatus.INITIALIZING if self._initializing else SessionStatus.UNINITIALIZED
        if self._state.user is not None:
            return SessionStatus.AUTHENTICATED
        if self._state.error:
            return SessionStatus.ERROR
        return SessionStatus.ANONYMOUS

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published state; returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes: Any) -> None:
        if not self._alive:
            return
        # initialized never goes back to False
        changes["initialized"] = self._state.initialized or changes.get("initialized", False)
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            listener(self._state)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise BackendError("Request timed out") from exc

    # ---------- bootstrap ----------
    async def initialize(self) -> None:
        """Resolve the current session once; concurrent or repeated calls are no-ops."""
        if not self._alive or self._initializing or self._state.initialized:
            return
        self._initializing = True
        self._publish(loading=True)

        self._subscription = self._auth.on_auth_state_change(self._enqueue)
        self._consumer = asyncio.create_task(self._consume())

        try:
            user = await self._call(self._auth.get_session())
            profile = await self._resolve_profile(user) if user is not None else None
        except BackendError as exc:
            logger.warning("Session bootstrap failed: %s", exc.message, extra=LOG_EXTRA)
            self._publish(user=None, profile=None, loading=False, initialized=True, error=exc.message)
        except Exception:
            logger.exception("Unexpected error during session bootstrap", extra=LOG_EXTRA)
            self._publish(
                user=None,
                profile=None,
                loading=False,
                initialized=True,
                error="Unexpected error while restoring your session",
            )
        else:
            self._publish(user=user, profile=profile, loading=False, initialized=True, error=None)
        finally:
            self._ready.set()

    async def ready(self) -> None:
        await self._ready.wait()

    async def _resolve_profile(self, user: Identity) -> Profile:
        profile = await self._call(self._profiles.get_profile(user.id))
        if profile is not None:
            return profile

        draft = synthesize_profile(user)
        logger.info("No profile for user %s, creating one", user.id, extra=LOG_EXTRA)
        try:
            return await self._call(self._profiles.create_profile(draft))
        except BackendError as exc:
            logger.warning("Profile creation failed: %s", exc.message, extra=LOG_EXTRA)
            self.notifications.warning("Your profile could not be saved, using a temporary one")
            return draft

    # ---------- auth change events ----------
    def _enqueue(self, event: str, user: Optional[Identity]) -> None:
        if self._alive:
            self._events.put_nowait((event, user))

    async def _consume(self) -> None:
        await self._ready.wait()
        while True:
            event, user = await self._events.get()
            try:
                await self._apply_event(event, user)
            except Exception:
                logger.exception("Failed to apply auth event %s", event, extra=LOG_EXTRA)
            finally:
                self._events.task_done()

    async def _apply_event(self, event: str, user: Optional[Identity]) -> None:
        if not self._alive:
            return
        previous = self._state.user

        if event == TOKEN_REFRESHED and user is not None:
            self._publish(user=user)
            return

        if event == SIGNED_OUT or user is None:
            self._publish(user=None, profile=None, error=None)
            if previous is not None:
                self.notifications.info("Session closed")
            return

        if (
            event == INITIAL_SESSION
            and previous is not None
            and previous.id == user.id
            and self._state.profile is not None
        ):
            return

        try:
            profile = await self._resolve_profile(user)
        except BackendError as exc:
            self._publish(user=user, profile=None, error=exc.message)
            self.notifications.error(f"Could not load your profile: {exc.message}")
            return

        self._publish(user=user, profile=profile, error=None)
        if event == SIGNED_IN and (previous is None or previous.id != user.id):
            self.notifications.success(f"Welcome, {profile.display_name}")

    async def drain(self) -> None:
        """Wait until every queued auth event has been applied."""
        await self._events.join()

    # ---------- operations ----------
    def _fail(self, message: str, field_errors: Optional[Dict[str, str]] = None) -> AuthResult:
        toast_id = self.notifications.error(message)
        return AuthResult.failed(message, field_errors, toast_id=toast_id)

    def _reject(self, errors: Dict[str, str]) -> AuthResult:
        return self._fail(next(iter(errors.values())), errors)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        credentials, errors = validate(SignInCredentials, {"email": email, "password": password})
        if credentials is None:
            return self._reject(errors)

        key = credentials.email.lower()
        if self._rate_limiter is not None and not self._rate_limiter.is_allowed(key):
            logger.warning("Sign-in rate limit hit", extra={**LOG_EXTRA, "user": key})
            return self._fail("Too many sign-in attempts. Wait a minute and try again.")

        logger.info(
            "Sign-in attempt",
            extra={**LOG_EXTRA, "payload": redact({"email": key, "password": password})},
        )
        self._publish(loading=True)
        try:
            user = await self._call(
                self._auth.sign_in_with_password(credentials.email, credentials.password)
            )
        except BackendError as exc:
            return self._fail(exc.message)
        finally:
            self._publish(loading=False)
        # the profile arrives through the SIGNED_IN event, not here
        return AuthResult(success=True, user=user)

    async def sign_up(self, email: str, password: str, full_name: str, role: str) -> AuthResult:
        credentials, errors = validate(
            SignUpCredentials,
            {"email": email, "password": password, "full_name": full_name, "role": role},
        )
        if credentials is None:
            return self._reject(errors)

        self._publish(loading=True)
        try:
            user = await self._call(
                self._auth.sign_up(
                    credentials.email,
                    credentials.password,
                    {"full_name": credentials.full_name, "role": credentials.role},
                )
            )
        except BackendError as exc:
            return self._fail(exc.message)
        finally:
            self._publish(loading=False)

        toast_id = self.notifications.success(
            "Account created. Check your email to confirm it before signing in."
        )
        return AuthResult(success=True, user=user, toast_id=toast_id)

    async def sign_out(self) -> AuthResult:
        # state is cleared by the SIGNED_OUT event
        self._publish(loading=True)
        try:
            await self._call(self._auth.sign_out())
        except BackendError as exc:
            return self._fail(exc.message)
        finally:
            self._publish(loading=False)
        return AuthResult(success=True)

    async def refresh_profile(self) -> Optional[Profile]:
        user = self._state.user
        if user is None:
            return None
        try:
            profile = await self._call(self._profiles.get_profile(user.id))
        except BackendError as exc:
            self.notifications.error(f"Could not refresh your profile: {exc.message}")
            return self._state.profile
        if profile is not None:
            self._publish(profile=profile)
        return self._state.profile

    async def update_profile(self, **changes: Any) -> AuthResult:
        user = self._state.user
        if user is None:
            return self._fail("You must be signed in to update your profile")

        update, errors = validate(ProfileUpdate, changes)
        if update is None:
            return self._reject(errors)
        values = update.changes()
        if not values:
            return AuthResult(success=True, user=user)

        try:
            saved = await self._call(self._profiles.update_profile(user.id, values))
        except BackendError as exc:
            return self._fail(exc.message)

        current = self._state.profile
        merged = current.model_copy(update=saved.model_dump()) if current is not None else saved
        self._publish(profile=merged)
        toast_id = self.notifications.success("Profile updated")
        return AuthResult(success=True, user=user, toast_id=toast_id)

    async def set_client_active(self, client_id: str, active: bool) -> AuthResult:
        """Trainer-only switch of a client's access; enforced here, not by the backend."""
        if not (self.is_trainer and self.is_active):
            return self._fail("Only trainers can change a client's access")
        try:
            client = await self._call(self._profiles.set_active(client_id, active))
        except BackendError as exc:
            return self._fail(exc.message)

        verb = "reactivated" if active else "suspended"
        logger.info("Client %s %s", client.id, verb, extra={**LOG_EXTRA, "user": self._state.user.id})
        self.notifications.success(f"{client.display_name} {verb}")
        return AuthResult(success=True)

    # ---------- teardown ----------
    async def close(self) -> None:
        """Stop applying results; anything still in flight is discarded."""
        self._alive = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        while not self._events.empty():
            self._events.get_nowait()
            self._events.task_done()
        self._listeners.clear()
        self._ready.set()
