from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["trainer", "client"]
ROLES = ("trainer", "client")
DEFAULT_ROLE: Role = "client"


class Identity(BaseModel):
    # Supabase auth user; lifecycle is owned by the auth service
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Profile(BaseModel):
    # id is the auth user id (one row per identity)
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role = DEFAULT_ROLE
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "User"


class SessionState(BaseModel):
    user: Optional[Identity] = None
    profile: Optional[Profile] = None
    loading: bool = False
    initialized: bool = False
    error: Optional[str] = None


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    ERROR = "error"


def synthesize_profile(identity: Identity) -> Profile:
    """Build the first profile for an identity from its sign-up metadata."""
    role = identity.metadata.get("role")
    now = datetime.now().astimezone()
    return Profile(
        id=identity.id,
        email=identity.email,
        full_name=identity.metadata.get("full_name"),
        role=role if role in ROLES else DEFAULT_ROLE,
        active=True,
        created_at=now,
        updated_at=now,
    )


def is_trainer(profile: Optional[Profile]) -> bool:
    return profile is not None and profile.role == "trainer"


def is_client(profile: Optional[Profile]) -> bool:
    return profile is not None and profile.role == "client"


def is_active(profile: Optional[Profile]) -> bool:
    return profile is not None and profile.active
