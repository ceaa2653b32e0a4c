import pytest

from village.domain.schemas import NavigationIntent, Notice
from village.services.auth.navigation import HistoryRouter, LogNotifier, NavigationGuard, show_notice


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestNavigationGuard:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def router(self):
        return HistoryRouter("/")

    @pytest.fixture
    def guard(self, router, clock):
        return NavigationGuard(router, cooldown_seconds=0.5, clock=clock)

    def test_navigates(self, guard, router):
        assert guard.navigate("/auth") is True
        assert router.history == ["/", "/auth"]

    def test_suppresses_same_path(self, guard, router):
        assert guard.navigate("/") is False
        assert router.history == ["/"]

    def test_suppresses_during_cooldown(self, guard, router, clock):
        guard.navigate("/auth")
        clock.now += 0.1

        assert guard.in_flight() is True
        assert guard.navigate("/dashboard/family") is False

        clock.now += 0.5
        assert guard.navigate("/dashboard/family") is True
        assert router.current_path == "/dashboard/family"

    def test_skip_checks_bypasses_both(self, guard, router):
        guard.navigate("/auth")

        assert guard.navigate("/auth", skip_checks=True) is True
        assert router.history == ["/", "/auth", "/auth"]

    def test_replace(self, guard, router):
        guard.navigate("/booking/1", replace=True)

        assert router.history == ["/booking/1"]

    def test_follow_intent(self, guard, router):
        guard.follow(NavigationIntent(path="/dashboard/admin"))

        assert router.current_path == "/dashboard/admin"


class TestLogNotifier:
    def test_keeps_recent_notices(self):
        notifier = LogNotifier(maxlen=2)
        notifier.info("one")
        notifier.success("two")
        notifier.error("three")

        assert notifier.messages() == ["two", "three"]
        assert notifier.messages("error") == ["three"]

    def test_show_notice_dispatches_by_level(self):
        notifier = LogNotifier()

        show_notice(notifier, Notice(level="success", message="Welcome"))
        show_notice(notifier, None)

        assert notifier.messages("success") == ["Welcome"]
