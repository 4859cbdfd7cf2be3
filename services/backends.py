"""
Contracts the session core expects from the hosted backend.

The production implementations live in ``app.supabase_client``; tests use
in-memory fakes.
"""

from typing import Any, Callable, Dict, Optional, Protocol

from app.schema import Identity, Profile

# Supabase auth change events the session core reacts to
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
INITIAL_SESSION = "INITIAL_SESSION"
USER_UPDATED = "USER_UPDATED"

AuthCallback = Callable[[str, Optional[Identity]], None]


class BackendError(Exception):
    """A call to the auth service or the profile table failed."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class AuthBackend(Protocol):
    async def get_session(self) -> Optional[Identity]: ...

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription: ...

    async def sign_in_with_password(self, email: str, password: str) -> Identity: ...

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> Optional[Identity]: ...

    async def sign_out(self) -> None: ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def create_profile(self, profile: Profile) -> Profile: ...

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Profile: ...

    async def set_active(self, user_id: str, active: bool) -> Profile: ...
