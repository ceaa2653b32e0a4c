import pytest

from village.core.exceptions import SupabaseError
from village.core.retry import RetryHelper


class SleepRecorder:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(float(seconds))


class TestRetryHelper:
    @pytest.fixture
    def sleeper(self):
        return SleepRecorder()

    @pytest.fixture
    def helper(self, sleeper):
        return RetryHelper(max_attempts=3, backoff_step=1.0, backoff_max=3.0, sleep=sleeper)

    @pytest.mark.asyncio
    async def test_returns_first_success(self, helper, sleeper):
        async def lookup():
            return "family"

        assert await helper.run("get_user_role", lookup) == "family"
        assert sleeper.waits == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self, helper, sleeper):
        calls = []

        async def lookup():
            calls.append(helper.attempts_in_flight("get_profile"))
            if len(calls) < 2:
                raise SupabaseError("timeout")
            return "ok"

        assert await helper.run("get_profile", lookup) == "ok"
        assert calls == [1, 2]
        assert sleeper.waits == [1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_returns_none_without_leaks(self, helper):
        """Always-failing lookup: three attempts, None, no counter left behind."""
        calls = []

        async def lookup():
            calls.append(1)
            raise SupabaseError("down")

        assert await helper.run("get_user_role", lookup) is None
        assert len(calls) == 3
        assert helper.attempts_in_flight("get_user_role") is None
        assert helper.active_operations == {}

    @pytest.mark.asyncio
    async def test_backoff_is_linear_and_capped(self, sleeper):
        helper = RetryHelper(max_attempts=5, backoff_step=1.0, backoff_max=3.0, sleep=sleeper)

        async def lookup():
            raise SupabaseError("down")

        await helper.run("get_profile", lookup)

        assert sleeper.waits == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_per_call_attempt_override(self, helper):
        calls = []

        async def lookup():
            calls.append(1)
            raise SupabaseError("down")

        await helper.run("get_profile", lookup, max_attempts=1)

        assert len(calls) == 1
