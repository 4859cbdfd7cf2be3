import asyncio

import pytest

from app.schema import Identity, SessionStatus
from services.access_gate import AccessGate, GateOutcome
from services.backends import INITIAL_SESSION, SIGNED_IN, TOKEN_REFRESHED, BackendError
from services.rate_limiter import RateLimiter
from services.session_store import SessionStore

from conftest import make_profile


def _messages(store):
    return [toast.message for toast in store.notifications.active()]


# ---------- bootstrap ----------
@pytest.mark.asyncio
async def test_concurrent_initialize_fetches_session_once(store, auth):
    auth.delay = 0.01

    await asyncio.gather(*(store.initialize() for _ in range(5)))
    await store.ready()

    assert auth.calls["get_session"] == 1
    assert store.initialized is True
    assert store.loading is False


@pytest.mark.asyncio
async def test_initialize_again_after_ready_is_a_noop(store, auth):
    await store.initialize()
    await store.initialize()

    assert auth.calls["get_session"] == 1


@pytest.mark.asyncio
async def test_initialize_without_session_is_anonymous(store):
    assert store.status is SessionStatus.UNINITIALIZED

    await store.initialize()

    assert store.user is None
    assert store.profile is None
    assert store.error is None
    assert store.status is SessionStatus.ANONYMOUS


@pytest.mark.asyncio
async def test_initialize_with_session_loads_existing_profile(store, auth, profiles, trainer):
    auth.session_user = trainer

    await store.initialize()

    assert store.user.id == "t1"
    assert store.profile.role == "trainer"
    assert store.is_trainer and store.is_active and not store.is_client
    assert profiles.calls["create_profile"] == 0
    assert store.status is SessionStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_missing_profile_is_created_once_with_client_defaults(store, auth, profiles):
    auth.session_user = Identity(id="u9", email="new@example.com")

    await store.initialize()
    await store.drain()

    assert profiles.calls["create_profile"] == 1
    assert store.profile.role == "client"
    assert store.profile.active is True
    assert profiles.rows["u9"].email == "new@example.com"


@pytest.mark.asyncio
async def test_missing_profile_uses_role_from_sign_up_metadata(store, auth, profiles):
    auth.session_user = Identity(
        id="u10", email="pt@example.com", metadata={"role": "trainer", "full_name": "Pat Trainer"}
    )

    await store.initialize()

    assert store.profile.role == "trainer"
    assert store.profile.full_name == "Pat Trainer"


@pytest.mark.asyncio
async def test_failed_profile_creation_falls_back_to_temporary_profile(store, auth, profiles):
    auth.session_user = Identity(id="u11", email="tmp@example.com")
    profiles.create_error = BackendError("insert denied")

    await store.initialize()

    assert store.profile.id == "u11"
    assert store.profile.role == "client"
    assert "u11" not in profiles.rows
    assert any("temporary" in message for message in _messages(store))


@pytest.mark.asyncio
async def test_session_fetch_failure_parks_in_error_state(store, auth):
    auth.get_session_error = BackendError("network unreachable")

    await store.initialize()

    state = store.state
    assert state.initialized is True
    assert state.loading is False
    assert state.user is None
    assert state.error == "network unreachable"
    assert store.status is SessionStatus.ERROR

    decision = AccessGate("trainer").evaluate(state)
    assert decision.outcome is GateOutcome.REDIRECT
    assert decision.location == "/"


@pytest.mark.asyncio
async def test_hung_session_fetch_times_out(auth, profiles):
    auth.delay = 0.5
    store = SessionStore(auth, profiles, timeout=0.01)

    await store.initialize()

    assert store.initialized is True
    assert store.loading is False
    assert store.error == "Request timed out"
    await store.close()


@pytest.mark.asyncio
async def test_profile_read_failure_during_bootstrap_is_an_error(store, auth, profiles, trainer):
    auth.session_user = trainer
    profiles.get_error = BackendError("profiles unavailable")

    await store.initialize()

    assert store.user is None
    assert store.error == "profiles unavailable"


@pytest.mark.asyncio
async def test_unexpected_bootstrap_failure_parks_in_error_state(store, auth, profiles, trainer):
    auth.session_user = trainer
    profiles.get_error = ValueError("row could not be parsed")

    await store.initialize()
    await store.initialize()
    await store.ready()

    assert auth.calls["get_session"] == 1
    assert store.initialized is True
    assert store.loading is False
    assert store.user is None
    assert store.error == "Unexpected error while restoring your session"
    assert store.status is SessionStatus.ERROR
    assert AccessGate("trainer").evaluate(store.state).location == "/"


@pytest.mark.asyncio
async def test_initialized_never_reverts(store, auth, client_user):
    seen = []
    store.subscribe(lambda state: seen.append(state.initialized))

    await store.initialize()
    await store.sign_in("client@example.com", "secret2")
    await store.drain()
    await store.sign_out()
    await store.drain()

    first_ready = seen.index(True)
    assert all(seen[first_ready:])


# ---------- auth events ----------
@pytest.mark.asyncio
async def test_sign_in_publishes_profile_through_change_event(store, client_user):
    await store.initialize()

    result = await store.sign_in("client@example.com", "secret2")
    await store.drain()

    assert result.success is True
    assert result.user.id == "c1"
    assert store.profile.full_name == "Carl Client"
    assert store.is_client
    assert "Welcome, Carl Client" in _messages(store)


@pytest.mark.asyncio
async def test_sign_in_with_wrong_password_reports_error(store, auth, client_user):
    await store.initialize()

    result = await store.sign_in("client@example.com", "nope")
    await store.drain()

    assert result.success is False
    assert result.error == "Invalid login credentials"
    assert store.user is None
    assert store.loading is False
    assert "Invalid login credentials" in _messages(store)
    assert result.toast_id in [toast.id for toast in store.notifications.active()]


@pytest.mark.asyncio
async def test_sign_in_validation_fails_before_backend(store, auth):
    await store.initialize()

    result = await store.sign_in("not-an-email", "")

    assert result.success is False
    assert set(result.field_errors) == {"email", "password"}
    assert auth.calls["sign_in"] == 0


@pytest.mark.asyncio
async def test_sign_in_is_rate_limited_per_email(auth, profiles, client_user):
    store = SessionStore(auth, profiles, rate_limiter=RateLimiter(2, 60.0))
    await store.initialize()

    await store.sign_in("client@example.com", "wrong")
    await store.sign_in("client@example.com", "wrong")
    result = await store.sign_in("client@example.com", "secret2")

    assert result.success is False
    assert "Too many sign-in attempts" in result.error
    assert auth.calls["sign_in"] == 2
    await store.close()


@pytest.mark.asyncio
async def test_sign_out_clears_state(store, auth, client_user):
    auth.session_user = client_user
    await store.initialize()

    result = await store.sign_out()
    await store.drain()

    assert result.success is True
    assert store.user is None
    assert store.profile is None
    assert "Session closed" in _messages(store)
    decision = AccessGate("client").evaluate(store.state)
    assert decision.location == "/"


@pytest.mark.asyncio
async def test_sign_out_twice_is_a_noop(store, auth, client_user):
    auth.session_user = client_user
    await store.initialize()

    await store.sign_out()
    await store.drain()
    state_after_first = store.state
    second = await store.sign_out()
    await store.drain()

    assert second.success is True
    assert store.state == state_after_first
    assert _messages(store).count("Session closed") == 1


@pytest.mark.asyncio
async def test_token_refresh_does_not_refetch_profile(store, auth, profiles, trainer):
    auth.session_user = trainer
    await store.initialize()
    fetches = profiles.calls["get_profile"]

    auth.emit(TOKEN_REFRESHED, trainer)
    await store.drain()

    assert profiles.calls["get_profile"] == fetches
    assert store.profile.id == "t1"


@pytest.mark.asyncio
async def test_initial_session_for_resolved_user_is_ignored(store, auth, profiles, trainer):
    auth.session_user = trainer
    await store.initialize()
    fetches = profiles.calls["get_profile"]

    auth.emit(INITIAL_SESSION, trainer)
    await store.drain()

    assert profiles.calls["get_profile"] == fetches


@pytest.mark.asyncio
async def test_events_are_applied_in_delivery_order(store, auth, trainer, client_user):
    await store.initialize()

    auth.emit(SIGNED_IN, trainer)
    auth.emit(SIGNED_IN, client_user)
    await store.drain()

    assert store.user.id == "c1"
    assert store.profile.role == "client"


@pytest.mark.asyncio
async def test_profile_failure_on_event_keeps_user_without_profile(store, auth, profiles, client_user):
    await store.initialize()
    profiles.get_error = BackendError("timeout reading profile")

    auth.emit(SIGNED_IN, client_user)
    await store.drain()

    assert store.user.id == "c1"
    assert store.profile is None
    assert store.error == "timeout reading profile"
    assert AccessGate().evaluate(store.state).location == "/"


# ---------- sign up ----------
@pytest.mark.asyncio
async def test_sign_up_rejects_short_password_locally(store, auth):
    await store.initialize()

    result = await store.sign_up("a@b.com", "short", "Ann Client", "client")

    assert result.success is False
    assert result.field_errors["password"] == "Password must be at least 6 characters"
    assert auth.calls["sign_up"] == 0


@pytest.mark.asyncio
async def test_sign_up_rejects_unknown_role_and_short_name(store, auth):
    await store.initialize()

    result = await store.sign_up("a@b.com", "longenough", "A", "admin")

    assert result.success is False
    assert "full_name" in result.field_errors
    assert "role" in result.field_errors
    assert auth.calls["sign_up"] == 0


@pytest.mark.asyncio
async def test_sign_up_sends_metadata_and_does_not_sign_in(store, auth):
    await store.initialize()

    result = await store.sign_up("new@example.com", "longenough", "  Nina New ", "trainer")
    await store.drain()

    assert result.success is True
    assert auth.sign_up_metadata == [{"full_name": "Nina New", "role": "trainer"}]
    assert store.user is None


@pytest.mark.asyncio
async def test_sign_up_backend_error_is_returned(store, auth, client_user):
    await store.initialize()

    result = await store.sign_up("client@example.com", "longenough", "Carl Again", "client")

    assert result.success is False
    assert result.error == "User already registered"


# ---------- profile ----------
@pytest.mark.asyncio
async def test_refresh_profile_without_user_is_noop(store, profiles):
    await store.initialize()

    assert await store.refresh_profile() is None
    assert profiles.calls["get_profile"] == 0


@pytest.mark.asyncio
async def test_refresh_profile_picks_up_remote_changes(store, auth, profiles, client_user):
    auth.session_user = client_user
    await store.initialize()
    profiles.rows["c1"] = profiles.rows["c1"].model_copy(update={"full_name": "Carl Renamed"})

    profile = await store.refresh_profile()

    assert profile.full_name == "Carl Renamed"
    assert store.profile.full_name == "Carl Renamed"


@pytest.mark.asyncio
async def test_update_profile_writes_through_and_republishes(store, auth, profiles, client_user):
    auth.session_user = client_user
    await store.initialize()

    result = await store.update_profile(full_name="Carl C. Client")

    assert result.success is True
    assert profiles.rows["c1"].full_name == "Carl C. Client"
    assert store.profile.full_name == "Carl C. Client"
    assert store.profile.role == "client"


@pytest.mark.asyncio
async def test_update_profile_cannot_change_role(store, auth, profiles, client_user):
    auth.session_user = client_user
    await store.initialize()

    result = await store.update_profile(role="trainer")

    assert result.success is False
    assert result.field_errors == {"role": "role cannot be changed"}
    assert profiles.calls["update_profile"] == 0


@pytest.mark.asyncio
async def test_update_profile_requires_user(store):
    await store.initialize()

    result = await store.update_profile(full_name="Nobody Here")

    assert result.success is False


@pytest.mark.asyncio
async def test_trainer_can_suspend_client(store, auth, profiles, trainer, client_user):
    auth.session_user = trainer
    await store.initialize()

    result = await store.set_client_active("c1", False)

    assert result.success is True
    assert profiles.rows["c1"].active is False
    assert "Carl Client suspended" in _messages(store)


@pytest.mark.asyncio
async def test_client_cannot_toggle_other_clients(store, auth, profiles, client_user):
    profiles.add(make_profile("c2", "client"))
    auth.session_user = client_user
    await store.initialize()

    result = await store.set_client_active("c2", False)

    assert result.success is False
    assert profiles.calls["set_active"] == 0
    assert profiles.rows["c2"].active is True


# ---------- teardown ----------
@pytest.mark.asyncio
async def test_close_discards_in_flight_bootstrap(auth, profiles, client_user):
    auth.session_user = client_user
    auth.delay = 0.05
    store = SessionStore(auth, profiles)

    task = asyncio.create_task(store.initialize())
    await asyncio.sleep(0)
    await store.close()
    await task

    assert store.user is None
    assert store.initialized is False
    assert auth.listeners == []


@pytest.mark.asyncio
async def test_unsubscribed_listener_stops_receiving(store):
    seen = []
    unsubscribe = store.subscribe(seen.append)
    await store.initialize()
    count = len(seen)

    unsubscribe()
    await store.sign_out()
    await store.drain()

    assert count > 0
    assert len(seen) == count


@pytest.mark.asyncio
async def test_initialize_after_close_does_nothing(auth, profiles):
    store = SessionStore(auth, profiles)
    await store.close()

    await store.initialize()

    assert auth.calls["get_session"] == 0
    assert auth.listeners == []
    assert store.status is SessionStatus.UNINITIALIZED
