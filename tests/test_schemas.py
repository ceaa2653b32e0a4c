from datetime import datetime, timezone

import jwt
import pytest

from village.domain.schemas import (
    AuthEvent,
    AuthSession,
    AuthUser,
    ProfileRecord,
    SessionSnapshot,
    UserRole,
)


class TestUserRole:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("family", UserRole.FAMILY),
            (" Professional ", UserRole.PROFESSIONAL),
            (UserRole.ADMIN, UserRole.ADMIN),
            ("wizard", None),
            ("", None),
            (None, None),
            (3, None),
        ],
    )
    def test_parse(self, value, expected):
        assert UserRole.parse(value) is expected


class TestAuthEvent:
    def test_parse_known_and_unknown(self):
        assert AuthEvent.parse("SIGNED_IN") is AuthEvent.SIGNED_IN
        assert AuthEvent.parse("MFA_CHALLENGE_VERIFIED") is None


class TestAuthSession:
    def test_expiry_from_token_claim(self):
        exp = int(datetime(2030, 1, 1, tzinfo=timezone.utc).timestamp())
        token = jwt.encode({"sub": "user-1", "exp": exp}, "secret", algorithm="HS256")

        session = AuthSession(access_token=token, user=AuthUser(id="user-1"))

        assert session.expires_at == exp
        assert session.is_expired(datetime(2029, 1, 1, tzinfo=timezone.utc)) is False
        assert session.is_expired(datetime(2031, 1, 1, tzinfo=timezone.utc)) is True

    def test_opaque_token_has_no_expiry(self):
        session = AuthSession(access_token="opaque", user=AuthUser(id="user-1"))

        assert session.expires_at is None
        assert session.is_expired() is False

    def test_embedded_role(self):
        user = AuthUser(id="user-1", user_metadata={"role": "community"})

        assert user.embedded_role is UserRole.COMMUNITY
        assert AuthUser(id="user-2").embedded_role is None


class TestProfileRecord:
    @pytest.mark.parametrize("full_name,complete", [("Ada", True), ("  ", False), (None, False)])
    def test_completeness(self, full_name, complete):
        assert ProfileRecord(id="user-1", full_name=full_name).is_complete is complete

    def test_ignores_extra_columns(self):
        profile = ProfileRecord(id="user-1", full_name="Ada", phone="555")

        assert profile.full_name == "Ada"


def test_snapshot_is_frozen():
    snapshot = SessionSnapshot()

    with pytest.raises(Exception):
        snapshot.profile_complete = True
