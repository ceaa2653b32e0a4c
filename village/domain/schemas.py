from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel, ConfigDict, Field, model_validator


class UserRole(str, Enum):
    FAMILY = "family"
    PROFESSIONAL = "professional"
    COMMUNITY = "community"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> Optional["UserRole"]:
        """Return the role for value, or None when it is empty or unknown."""
        if isinstance(value, cls):
            return value
        if not value or not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"

    @classmethod
    def parse(cls, value: Any) -> Optional["AuthEvent"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class AuthUser(BaseModel):
    """Identity record issued by the auth provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def embedded_role(self) -> Optional[UserRole]:
        """Role written into user metadata at sign-up, if any."""
        return UserRole.parse(self.user_metadata.get("role"))


class AuthSession(BaseModel):
    """
    Read-only copy of the provider's session.

    expires_at falls back to the access token's exp claim. The token is only
    read here, never trusted: the provider already validated it.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser

    @model_validator(mode="before")
    @classmethod
    def derive_expiry_from_token(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("expires_at") and data.get("access_token"):
            try:
                claims = jwt.decode(data["access_token"], options={"verify_signature": False})
                if claims.get("exp"):
                    data = {**data, "expires_at": int(claims["exp"])}
            except jwt.PyJWTError:
                pass
        return data

    @property
    def user_id(self) -> str:
        return self.user.id

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now.timestamp() >= self.expires_at


class ProfileRecord(BaseModel):
    """Row of the profiles table, reduced to the fields the controller reads."""

    id: str
    full_name: Optional[str] = None
    role: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.full_name and self.full_name.strip())

    @property
    def user_role(self) -> Optional[UserRole]:
        return UserRole.parse(self.role)


class SessionSnapshot(BaseModel):
    """
    Consistent view of the controller's derived state.

    Replaced as a whole, never field by field.
    """

    model_config = ConfigDict(frozen=True)

    session: Optional[AuthSession] = None
    user: Optional[AuthUser] = None
    role: Optional[UserRole] = None
    profile_complete: bool = False


class PendingSnapshot(BaseModel):
    """Pending action slots as read for a single redirect decision."""

    model_config = ConfigDict(frozen=True)

    feature_upvote: Optional[str] = None
    booking: Optional[str] = None
    message: Optional[str] = None
    profile_update: Optional[str] = None

    @property
    def has_pending_action(self) -> bool:
        return any((self.feature_upvote, self.booking, self.message, self.profile_update))


class NavigationIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    replace: bool = False
    skip_checks: bool = False


class RedirectKind(str, Enum):
    REGISTRATION = "registration"
    FEATURE_UPVOTE = "feature_upvote"
    PENDING_PATH = "pending_path"
    DASHBOARD = "dashboard"
    HOME = "home"


class Notice(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str  # success | info | error
    message: str


class RedirectDecision(BaseModel):
    """Outcome of the redirection policy plus the side effects it asks for."""

    model_config = ConfigDict(frozen=True)

    kind: RedirectKind
    intent: NavigationIntent
    notice: Optional[Notice] = None
    consume_slot: Optional[str] = None
    feature_id: Optional[str] = None
