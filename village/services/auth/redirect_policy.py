"""
Post-authentication redirection policy.

decide_redirect is pure: it reads the facts it is given and describes the
navigation plus the side effects the controller must carry out (upvote
write, slot consumption, notice). First matching rule wins:

1. profile incomplete      -> registration page for the role
2. pending feature upvote  -> record vote, family dashboard
3. pending booking/message/profile-update path -> that path
4. role known              -> role dashboard
5. otherwise               -> home
"""

from typing import Optional

from village.domain.schemas import (
    AuthUser,
    NavigationIntent,
    Notice,
    PendingSnapshot,
    RedirectDecision,
    RedirectKind,
    UserRole,
)
from village.services.auth.ledger import LedgerSlot

HOME_ROUTE = "/"
AUTH_ROUTE = "/auth"

DASHBOARD_ROUTES = {
    UserRole.FAMILY: "/dashboard/family",
    UserRole.PROFESSIONAL: "/dashboard/professional",
    UserRole.COMMUNITY: "/dashboard/community",
    UserRole.ADMIN: "/dashboard/admin",
}

# Admins have no registration form
REGISTRATION_ROUTES = {
    UserRole.FAMILY: "/registration/family",
    UserRole.PROFESSIONAL: "/registration/professional",
    UserRole.COMMUNITY: "/registration/community",
    UserRole.ADMIN: "/dashboard/admin",
}

DEFAULT_REGISTRATION_ROUTE = REGISTRATION_ROUTES[UserRole.FAMILY]

PROFILE_INCOMPLETE_MESSAGE = "Please complete your profile to continue"


def registration_route(role: Optional[UserRole], intended_role: Optional[UserRole]) -> str:
    for candidate in (role, intended_role):
        if candidate is not None:
            return REGISTRATION_ROUTES[candidate]
    return DEFAULT_REGISTRATION_ROUTE


def welcome_message(role: UserRole) -> str:
    return f"Welcome to your {role.value} dashboard!"


def decide_redirect(
    user: AuthUser,
    role: Optional[UserRole],
    profile_complete: bool,
    pending: PendingSnapshot,
    intended_role: Optional[UserRole] = None,
) -> RedirectDecision:
    """
    Decide where an authenticated user goes once loading has settled.

    Args:
        user: The signed-in user
        role: Resolved role (embedded metadata already adopted by the caller)
        profile_complete: Whether the profile has a display name
        pending: Pending action slots read from the ledger
        intended_role: Role remembered from the registration flow

    Returns:
        RedirectDecision describing target and side effects
    """
    if not profile_complete:
        return RedirectDecision(
            kind=RedirectKind.REGISTRATION,
            intent=NavigationIntent(path=registration_route(role, intended_role)),
            notice=Notice(level="info", message=PROFILE_INCOMPLETE_MESSAGE),
        )

    if pending.feature_upvote:
        return RedirectDecision(
            kind=RedirectKind.FEATURE_UPVOTE,
            intent=NavigationIntent(path=DASHBOARD_ROUTES[UserRole.FAMILY]),
            consume_slot=LedgerSlot.PENDING_FEATURE_UPVOTE.value,
            feature_id=pending.feature_upvote,
        )

    for slot, path in (
        (LedgerSlot.PENDING_BOOKING, pending.booking),
        (LedgerSlot.PENDING_MESSAGE, pending.message),
        (LedgerSlot.PENDING_PROFILE_UPDATE, pending.profile_update),
    ):
        if path:
            return RedirectDecision(
                kind=RedirectKind.PENDING_PATH,
                intent=NavigationIntent(path=path),
                consume_slot=slot.value,
            )

    if role is not None:
        return RedirectDecision(
            kind=RedirectKind.DASHBOARD,
            intent=NavigationIntent(path=DASHBOARD_ROUTES[role]),
            notice=Notice(level="success", message=welcome_message(role)),
        )

    return RedirectDecision(kind=RedirectKind.HOME, intent=NavigationIntent(path=HOME_ROUTE))
