"""
Pending action ledger.

Typed slots over a durable key/value store. Each slot holds at most one
value; writing overwrites and consuming reads then clears. Slot names are
the only keys the controller ever touches in the store.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import structlog

from village.domain.schemas import AuthUser, PendingSnapshot, UserRole
from village.services.auth.interfaces import KeyValueStore

logger = structlog.get_logger(__name__)


class LedgerSlot(str, Enum):
    LAST_ACTION = "lastAction"
    LAST_PATH = "lastPath"
    PENDING_FEATURE_ID = "pendingFeatureId"
    PENDING_FEATURE_UPVOTE = "pendingFeatureUpvote"
    PENDING_BOOKING = "pendingBooking"
    PENDING_MESSAGE = "pendingMessage"
    PENDING_PROFILE_UPDATE = "pendingProfileUpdate"
    REGISTERING_AS = "registeringAs"
    INTENDED_ROLE = "intendedRegistrationRole"
    AUTH_ERROR = "authStateError"
    AUTH_TIMEOUT_RECOVERY = "authTimeoutRecovery"
    LAST_AUTH_STATE = "lastKnownAuthState"


# Slots replayed after sign-in, in the order the redirect policy checks them
PENDING_PATH_SLOTS = (
    LedgerSlot.PENDING_BOOKING,
    LedgerSlot.PENDING_MESSAGE,
    LedgerSlot.PENDING_PROFILE_UPDATE,
)

ACTION_SLOTS = (
    LedgerSlot.LAST_ACTION,
    LedgerSlot.LAST_PATH,
    LedgerSlot.PENDING_FEATURE_ID,
    LedgerSlot.PENDING_FEATURE_UPVOTE,
) + PENDING_PATH_SLOTS

AUTH_FLAG_SLOTS = (
    LedgerSlot.REGISTERING_AS,
    LedgerSlot.INTENDED_ROLE,
    LedgerSlot.AUTH_ERROR,
    LedgerSlot.AUTH_TIMEOUT_RECOVERY,
    LedgerSlot.LAST_AUTH_STATE,
)

# Action description prefix -> slot receiving the redirect path
_ACTION_PREFIXES = (
    ("book care", LedgerSlot.PENDING_BOOKING),
    ("send message", LedgerSlot.PENDING_MESSAGE),
    ("update profile", LedgerSlot.PENDING_PROFILE_UPDATE),
)


def classify_action(action: str) -> Optional[LedgerSlot]:
    """
    Map a gated action description to its specific ledger slot.

    Returns None for actions that only get the generic last-action slots.
    """
    normalized = action.strip().lower()
    if normalized.startswith("upvote"):
        return LedgerSlot.PENDING_FEATURE_UPVOTE
    for prefix, slot in _ACTION_PREFIXES:
        if normalized.startswith(prefix):
            return slot
    return None


class PendingActionLedger:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, slot: LedgerSlot) -> Optional[str]:
        return self.store.get(slot.value)

    def set(self, slot: LedgerSlot, value: str) -> None:
        if not self.store.set(slot.value, value):
            logger.warning("ledger_write_dropped", slot=slot.value)

    def clear(self, slot: LedgerSlot) -> None:
        self.store.delete(slot.value)

    def consume(self, slot: LedgerSlot) -> Optional[str]:
        value = self.get(slot)
        if value is not None:
            self.clear(slot)
        return value

    def has(self, slot: LedgerSlot) -> bool:
        return bool(self.get(slot))

    def clear_many(self, slots: Iterable[LedgerSlot]) -> None:
        for slot in slots:
            self.clear(slot)

    def clear_actions(self) -> None:
        self.clear_many(ACTION_SLOTS)

    def clear_auth_flags(self) -> None:
        self.clear_many(AUTH_FLAG_SLOTS)

    def clear_all(self) -> None:
        self.clear_actions()
        self.clear_auth_flags()

    def pending(self) -> PendingSnapshot:
        return PendingSnapshot(
            feature_upvote=self.get(LedgerSlot.PENDING_FEATURE_UPVOTE),
            booking=self.get(LedgerSlot.PENDING_BOOKING),
            message=self.get(LedgerSlot.PENDING_MESSAGE),
            profile_update=self.get(LedgerSlot.PENDING_PROFILE_UPDATE),
        )

    def record_gated_action(self, action: str, redirect_path: str) -> Optional[LedgerSlot]:
        """
        Remember an action attempted while anonymous.

        Returns:
            The specific slot written, or None if only the generic slots were
        """
        self.set(LedgerSlot.LAST_ACTION, action)
        self.set(LedgerSlot.LAST_PATH, redirect_path)

        slot = classify_action(action)
        if slot is LedgerSlot.PENDING_FEATURE_UPVOTE:
            feature_id = self.get(LedgerSlot.PENDING_FEATURE_ID)
            if not feature_id:
                logger.warning("upvote_without_feature_id", action=action)
                return None
            self.set(slot, feature_id)
        elif slot is not None:
            self.set(slot, redirect_path)

        logger.info(
            "gated_action_recorded",
            action=action,
            slot=slot.value if slot else None,
            redirect_path=redirect_path,
        )
        return slot

    def intended_role(self) -> Optional[UserRole]:
        return UserRole.parse(self.get(LedgerSlot.INTENDED_ROLE))

    def promote_registering_role(self) -> Optional[UserRole]:
        """Turn a 'registering as X' marker into the intended registration role."""
        role = UserRole.parse(self.consume(LedgerSlot.REGISTERING_AS))
        if role:
            self.set(LedgerSlot.INTENDED_ROLE, role.value)
        return role

    def record_auth_state(self, user: AuthUser) -> None:
        self.set_json(
            LedgerSlot.LAST_AUTH_STATE,
            {
                "id": user.id,
                "email": user.email,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    def set_json(self, slot: LedgerSlot, value: Dict[str, Any]) -> None:
        self.set(slot, json.dumps(value))

    def get_json(self, slot: LedgerSlot) -> Optional[Dict[str, Any]]:
        raw = self.get(slot)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("ledger_slot_not_json", slot=slot.value)
            return None
