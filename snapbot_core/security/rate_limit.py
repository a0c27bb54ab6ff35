"""按设备的滑动窗口限流。

窗口内请求数达到上限后，设备被封禁一段时间（默认 5 分钟）。
状态以 JSON 形式保存在 KeyValueStore 中，键按设备指纹区分。
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from snapbot_core.domain.conversation import KeyValueStore
from snapbot_core.infrastructure.logging.logger import logger
from snapbot_core.security.fingerprint import DeviceFingerprint

RATE_LIMIT_KEY = "enhanced_rate_limit"


@dataclass
class RateWindow:
    requests: List[float] = field(default_factory=list)
    blocked: bool = False
    block_until: float = 0.0

    def to_json(self) -> str:
        return json.dumps({"requests": self.requests, "blocked": self.blocked, "block_until": self.block_until})

    @classmethod
    def from_json(cls, raw: str) -> "RateWindow":
        data = json.loads(raw)
        return cls(
            requests=[float(ts) for ts in data.get("requests", [])],
            blocked=bool(data.get("blocked", False)),
            block_until=float(data.get("block_until", 0.0)),
        )


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: float
    reason: Optional[str] = None


class EnhancedRateLimiter:
    def __init__(
        self,
        store: KeyValueStore,
        fingerprint: DeviceFingerprint,
        max_requests: int = 10,
        window: float = 60.0,
        block_seconds: float = 300.0,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._fingerprint = fingerprint
        self.max_requests = max_requests
        self.window = window
        self.block_seconds = block_seconds
        self.fail_open = fail_open
        self._clock = clock
        self._lock = asyncio.Lock()

    def _key(self) -> str:
        return f"{RATE_LIMIT_KEY}_{self._fingerprint.generate()}"

    async def check_limit(self) -> RateLimitDecision:
        async with self._lock:
            try:
                return await self._check()
            except Exception as e:
                now = self._clock()
                logger.warning(
                    "Rate limit check failed",
                    extra={"extra": {"error": str(e), "fail_open": self.fail_open}},
                )
                if self.fail_open:
                    return RateLimitDecision(allowed=True, remaining=self.max_requests, reset_time=now + self.window)
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=now + self.window,
                    reason="Rate limit state unavailable. Please try again shortly.",
                )

    async def _check(self) -> RateLimitDecision:
        key = self._key()
        now = self._clock()
        stored = await self._store.get(key)
        state = RateWindow.from_json(stored) if stored else RateWindow()

        state.requests = [ts for ts in state.requests if now - ts < self.window]

        if state.blocked and now < state.block_until:
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_time=state.block_until,
                reason="Temporarily blocked due to rate limit violation",
            )

        if state.blocked:
            state.blocked = False
            state.block_until = 0.0

        if len(state.requests) >= self.max_requests:
            state.blocked = True
            state.block_until = now + self.block_seconds
            await self._store.set(key, state.to_json())
            logger.warning(
                "Rate limit exceeded, device blocked",
                extra={"extra": {"block_until": state.block_until, "requests": len(state.requests)}},
            )
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_time=state.block_until,
                reason=f"Rate limit exceeded. Blocked for {self._block_minutes()} minutes.",
            )

        state.requests.append(now)
        await self._store.set(key, state.to_json())
        return RateLimitDecision(
            allowed=True,
            remaining=self.max_requests - len(state.requests),
            reset_time=now + self.window,
        )

    def _block_minutes(self) -> str:
        minutes = self.block_seconds / 60
        return str(int(minutes)) if minutes == int(minutes) else f"{minutes:.1f}"
