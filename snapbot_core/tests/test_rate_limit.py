import json

import pytest

from snapbot_core.domain.exceptions import StorageError
from snapbot_core.security.rate_limit import EnhancedRateLimiter, RATE_LIMIT_KEY


class BrokenStore:
    async def get(self, key):
        raise StorageError(code="STORE_READ_ERROR", message="disk gone")

    async def set(self, key, value):
        raise StorageError(code="STORE_WRITE_ERROR", message="disk gone")

    async def remove(self, key):
        raise StorageError(code="STORE_DELETE_ERROR", message="disk gone")


@pytest.mark.asyncio
async def test_first_ten_allowed_then_blocked(security, clock):
    limiter = security.rate_limiter
    for i in range(10):
        decision = await limiter.check_limit()
        assert decision.allowed
        assert decision.remaining == 10 - (i + 1)
        clock.advance(1)

    denied = await limiter.check_limit()
    assert not denied.allowed
    assert "Blocked" in denied.reason
    assert denied.reset_time == pytest.approx(clock.now + 300)


@pytest.mark.asyncio
async def test_block_lasts_five_minutes(security, clock):
    limiter = security.rate_limiter
    for _ in range(10):
        await limiter.check_limit()
    blocked_at = clock.now
    assert not (await limiter.check_limit()).allowed

    clock.advance(120)
    still = await limiter.check_limit()
    assert not still.allowed
    assert "Temporarily blocked" in still.reason
    assert still.reset_time == pytest.approx(blocked_at + 300)

    clock.now = blocked_at + 300
    released = await limiter.check_limit()
    assert released.allowed
    assert released.remaining == 9


@pytest.mark.asyncio
async def test_window_slides(security, clock):
    limiter = security.rate_limiter
    for _ in range(9):
        await limiter.check_limit()
    clock.advance(61)
    decision = await limiter.check_limit()
    assert decision.allowed
    assert decision.remaining == 9


@pytest.mark.asyncio
async def test_state_is_persisted_per_device(security, kv):
    await security.rate_limiter.check_limit()
    key = f"{RATE_LIMIT_KEY}_{security.fingerprint.generate()}"
    state = json.loads(kv.data[key])
    assert len(state["requests"]) == 1
    assert state["blocked"] is False


@pytest.mark.asyncio
async def test_storage_failure_fails_open_by_default(security, clock):
    limiter = EnhancedRateLimiter(BrokenStore(), security.fingerprint, clock=clock)
    decision = await limiter.check_limit()
    assert decision.allowed
    assert decision.remaining == 10


@pytest.mark.asyncio
async def test_storage_failure_can_fail_closed(security, clock):
    limiter = EnhancedRateLimiter(BrokenStore(), security.fingerprint, fail_open=False, clock=clock)
    decision = await limiter.check_limit()
    assert not decision.allowed
    assert decision.reason
