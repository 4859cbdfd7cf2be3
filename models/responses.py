from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from app.schema import (
    Identity,
    Profile,
    SessionState,
    SessionStatus,
    is_active,
    is_client,
    is_trainer,
)


class AuthResult(BaseModel):
    success: bool
    error: Optional[str] = None
    field_errors: Dict[str, str] = Field(default_factory=dict)
    user: Optional[Identity] = None
    # toast pushed for this outcome, so a caller showing it inline can dismiss it
    toast_id: Optional[str] = None

    @classmethod
    def failed(
        cls,
        error: str,
        field_errors: Optional[Dict[str, str]] = None,
        toast_id: Optional[str] = None,
    ) -> "AuthResult":
        return cls(success=False, error=error, field_errors=field_errors or {}, toast_id=toast_id)


class SessionSnapshot(BaseModel):
    status: SessionStatus
    user: Optional[Identity]
    profile: Optional[Profile]
    loading: bool
    initialized: bool
    error: Optional[str]
    is_trainer: bool
    is_client: bool
    is_active: bool

    @classmethod
    def from_state(cls, state: SessionState, status: SessionStatus) -> "SessionSnapshot":
        profile = state.profile
        return cls(
            status=status,
            user=state.user,
            profile=profile,
            loading=state.loading,
            initialized=state.initialized,
            error=state.error,
            is_trainer=is_trainer(profile),
            is_client=is_client(profile),
            is_active=is_active(profile),
        )


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    message: str
    details: Optional[Any] = None
