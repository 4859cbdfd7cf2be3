"""
Access Gate - decides whether a view may render for the current session
"""

from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from app.schema import Role, SessionState

from .session_store import SessionStore

VERIFYING_MESSAGE = "Verifying permissions..."
REDIRECTING_MESSAGE = "Redirecting..."
INACTIVE_MESSAGE = "Account inactive..."


class RedirectPolicy(BaseModel):
    home_paths: Dict[str, str] = Field(
        default_factory=lambda: {
            "trainer": "/trainer/dashboard",
            "client": "/client/dashboard",
        }
    )
    anonymous_path: str = "/"

    def home_for(self, role: Optional[str]) -> str:
        return self.home_paths.get(role or "", self.anonymous_path)


class GateOutcome(str, Enum):
    PENDING = "pending"
    ALLOW = "allow"
    REDIRECT = "redirect"


class GateDecision(BaseModel):
    outcome: GateOutcome
    location: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class AccessGate:
    """Admission rule for one view: optional required role, active account by default"""

    def __init__(
        self,
        required_role: Optional[Role] = None,
        require_active: bool = True,
        policy: Optional[RedirectPolicy] = None,
    ):
        self.required_role = required_role
        self.require_active = require_active
        self.policy = policy or RedirectPolicy()

    def evaluate(self, state: SessionState) -> GateDecision:
        if not state.initialized or state.loading:
            return GateDecision(outcome=GateOutcome.PENDING, message=VERIFYING_MESSAGE)

        profile = state.profile
        if state.user is None or profile is None:
            return self._redirect(self.policy.anonymous_path, "unauthenticated", REDIRECTING_MESSAGE)

        if self.required_role and profile.role != self.required_role:
            # send users to their own home, not to a generic forbidden page
            return self._redirect(self.policy.home_for(profile.role), "role_mismatch", REDIRECTING_MESSAGE)

        if self.require_active and not profile.active:
            return self._redirect(self.policy.anonymous_path, "inactive", INACTIVE_MESSAGE)

        return GateDecision(outcome=GateOutcome.ALLOW)

    @staticmethod
    def _redirect(location: str, reason: str, message: str) -> GateDecision:
        return GateDecision(
            outcome=GateOutcome.REDIRECT, location=location, reason=reason, message=message
        )

    def watch(self, store: SessionStore, navigate: Callable[[str], None]) -> Callable[[], None]:
        """Call ``navigate`` when a change of the gate's inputs produces a redirect.

        Repeated publishes with the same user, role, active flag and loading
        flags do not trigger navigation again.
        """
        last_key: Optional[Tuple] = None

        def on_change(state: SessionState) -> None:
            nonlocal last_key
            key = _inputs(state)
            if key == last_key:
                return
            last_key = key
            decision = self.evaluate(state)
            if decision.outcome is GateOutcome.REDIRECT and decision.location:
                navigate(decision.location)

        unsubscribe = store.subscribe(on_change)
        on_change(store.state)
        return unsubscribe


def _inputs(state: SessionState) -> Tuple:
    profile = state.profile
    return (
        state.user.id if state.user else None,
        profile.role if profile else None,
        profile.active if profile else None,
        state.loading,
        state.initialized,
    )
