from typing import Any, Dict, Optional

from pydantic import ValidationError
from supabase import AsyncClient, acreate_client

from services.backends import AuthCallback, BackendError
from .schema import Identity, Profile
from .settings import Settings

PROFILES_TABLE = "profiles"


async def create_supabase(settings: Settings) -> AsyncClient:
    return await acreate_client(settings.supabase_url, settings.supabase_anon_key)


def _message(exc: Exception) -> str:
    # supabase auth and postgrest errors both carry a readable ``message``
    message = getattr(exc, "message", None)
    return str(message or exc) or exc.__class__.__name__


def _identity(user: Any) -> Optional[Identity]:
    if user is None:
        return None
    return Identity(
        id=str(user.id),
        email=getattr(user, "email", None),
        metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


# ---------- auth ----------
class SupabaseAuthBackend:
    def __init__(self, client: AsyncClient):
        self._client = client

    async def get_session(self) -> Optional[Identity]:
        try:
            session = await self._client.auth.get_session()
        except Exception as e:
            raise BackendError(f"Could not restore session: {_message(e)}") from e
        return _identity(session.user) if session else None

    def on_auth_state_change(self, callback: AuthCallback):
        def relay(event: Any, session: Any) -> None:
            user = _identity(session.user) if session else None
            callback(str(getattr(event, "value", event)), user)

        return self._client.auth.on_auth_state_change(relay)

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        try:
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise BackendError(_message(e)) from e
        user = _identity(response.user)
        if user is None:
            raise BackendError("Sign in failed")
        return user

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> Optional[Identity]:
        try:
            response = await self._client.auth.sign_up(
                {"email": email, "password": password, "options": {"data": metadata}}
            )
        except Exception as e:
            raise BackendError(_message(e)) from e
        # user stays unconfirmed until the email link is followed
        return _identity(response.user)

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception as e:
            raise BackendError(_message(e)) from e


# ---------- profiles ----------
def _profile(row: Dict[str, Any]) -> Profile:
    try:
        return Profile.model_validate(row)
    except ValidationError as e:
        raise BackendError(f"Malformed profile row: {e.error_count()} invalid field(s)") from e


class SupabaseProfileStore:
    def __init__(self, client: AsyncClient):
        self._client = client

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            res = (
                await self._client.table(PROFILES_TABLE)
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise BackendError(f"Could not load profile: {_message(e)}") from e
        return _profile(res.data[0]) if res.data else None

    async def create_profile(self, profile: Profile) -> Profile:
        try:
            res = (
                await self._client.table(PROFILES_TABLE)
                .insert(profile.model_dump(mode="json", exclude_none=True))
                .execute()
            )
        except Exception as e:
            raise BackendError(f"Could not create profile: {_message(e)}") from e
        return _profile(res.data[0]) if res.data else profile

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Profile:
        try:
            res = (
                await self._client.table(PROFILES_TABLE)
                .update(changes)
                .eq("id", user_id)
                .execute()
            )
        except Exception as e:
            raise BackendError(f"Could not update profile: {_message(e)}") from e
        if not res.data:
            raise BackendError("Profile not found")
        return _profile(res.data[0])

    async def set_active(self, user_id: str, active: bool) -> Profile:
        try:
            res = (
                await self._client.table(PROFILES_TABLE)
                .update({"active": active})
                .eq("id", user_id)
                .eq("role", "client")
                .execute()
            )
        except Exception as e:
            raise BackendError(f"Could not update client: {_message(e)}") from e
        if not res.data:
            raise BackendError("Client not found")
        return _profile(res.data[0])
