"""
Pytest configuration and fixtures

The Supabase auth service and the profiles table are replaced by in-memory
fakes that honour the same contracts, so nothing here touches the network.
"""

import asyncio
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.schema import Identity, Profile
from app.settings import Settings
from main import create_app
from services.backends import SIGNED_IN, SIGNED_OUT, AuthCallback, BackendError
from services.rate_limiter import RateLimiter
from services.session_store import SessionStore


class FakeSubscription:
    def __init__(self, backend: "FakeAuthBackend", callback: AuthCallback):
        self._backend = backend
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._backend.listeners:
            self._backend.listeners.remove(self._callback)


class FakeAuthBackend:
    """Auth service double: accounts by email, change events delivered synchronously."""

    def __init__(self, session_user: Optional[Identity] = None):
        self.session_user = session_user
        self.accounts: Dict[str, Tuple[str, Identity]] = {}
        self.listeners: List[AuthCallback] = []
        self.calls: Counter = Counter()
        self.sign_up_metadata: List[Dict[str, Any]] = []
        self.get_session_error: Optional[Exception] = None
        self.delay = 0.0

    def add_account(self, email: str, password: str, user_id: Optional[str] = None, **metadata) -> Identity:
        identity = Identity(id=user_id or f"user-{len(self.accounts) + 1}", email=email, metadata=metadata)
        self.accounts[email] = (password, identity)
        return identity

    def emit(self, event: str, user: Optional[Identity]) -> None:
        for callback in list(self.listeners):
            callback(event, user)

    async def get_session(self) -> Optional[Identity]:
        self.calls["get_session"] += 1
        await asyncio.sleep(self.delay)
        if self.get_session_error is not None:
            raise self.get_session_error
        return self.session_user

    def on_auth_state_change(self, callback: AuthCallback) -> FakeSubscription:
        self.listeners.append(callback)
        return FakeSubscription(self, callback)

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        self.calls["sign_in"] += 1
        await asyncio.sleep(0)
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise BackendError("Invalid login credentials")
        self.session_user = account[1]
        self.emit(SIGNED_IN, self.session_user)
        return self.session_user

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Optional[Identity]:
        self.calls["sign_up"] += 1
        await asyncio.sleep(0)
        if email in self.accounts:
            raise BackendError("User already registered")
        self.sign_up_metadata.append(metadata)
        return self.add_account(email, password, **metadata)

    async def sign_out(self) -> None:
        self.calls["sign_out"] += 1
        await asyncio.sleep(0)
        self.session_user = None
        self.emit(SIGNED_OUT, None)


class FakeProfileStore:
    def __init__(self):
        self.rows: Dict[str, Profile] = {}
        self.calls: Counter = Counter()
        self.get_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None

    def add(self, profile: Profile) -> Profile:
        self.rows[profile.id] = profile
        return profile

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        self.calls["get_profile"] += 1
        await asyncio.sleep(0)
        if self.get_error is not None:
            raise self.get_error
        row = self.rows.get(user_id)
        return row.model_copy() if row else None

    async def create_profile(self, profile: Profile) -> Profile:
        self.calls["create_profile"] += 1
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        self.rows[profile.id] = profile
        return profile.model_copy()

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Profile:
        self.calls["update_profile"] += 1
        await asyncio.sleep(0)
        if user_id not in self.rows:
            raise BackendError("Profile not found")
        self.rows[user_id] = self.rows[user_id].model_copy(update=changes)
        return self.rows[user_id].model_copy()

    async def set_active(self, user_id: str, active: bool) -> Profile:
        self.calls["set_active"] += 1
        await asyncio.sleep(0)
        row = self.rows.get(user_id)
        if row is None or row.role != "client":
            raise BackendError("Client not found")
        self.rows[user_id] = row.model_copy(update={"active": active})
        return self.rows[user_id].model_copy()


def make_profile(user_id: str, role: str = "client", active: bool = True, **fields) -> Profile:
    fields.setdefault("email", f"{user_id}@example.com")
    fields.setdefault("full_name", f"User {user_id}")
    return Profile(id=user_id, role=role, active=active, **fields)


@pytest.fixture
def auth():
    return FakeAuthBackend()


@pytest.fixture
def profiles():
    return FakeProfileStore()


@pytest.fixture
def trainer(auth, profiles):
    identity = auth.add_account("coach@example.com", "secret1", user_id="t1", full_name="Tina Coach", role="trainer")
    profiles.add(make_profile("t1", "trainer", email="coach@example.com", full_name="Tina Coach"))
    return identity


@pytest.fixture
def client_user(auth, profiles):
    identity = auth.add_account("client@example.com", "secret2", user_id="c1", full_name="Carl Client")
    profiles.add(make_profile("c1", "client", email="client@example.com", full_name="Carl Client"))
    return identity


@pytest_asyncio.fixture
async def store(auth, profiles):
    session_store = SessionStore(auth, profiles, rate_limiter=RateLimiter(10, 60.0), timeout=1.0)
    yield session_store
    await session_store.close()


@pytest.fixture
def settings():
    return Settings(
        supabase_url="http://localhost:54321",
        supabase_anon_key="anon-key",
        session_secret="test-secret",
    )


def store_factory(auth: FakeAuthBackend, profiles: FakeProfileStore):
    async def factory() -> SessionStore:
        return SessionStore(auth, profiles, rate_limiter=RateLimiter(10, 60.0), timeout=1.0)

    return factory


@pytest.fixture
def web(settings, auth, profiles):
    """TestClient whose browser session is backed by the fakes."""
    app = create_app(settings=settings, store_factory=store_factory(auth, profiles))
    with TestClient(app) as client:
        yield client
