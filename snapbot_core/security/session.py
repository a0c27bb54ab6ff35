"""聊天会话生命周期：创建、校验（空闲超时 + 设备指纹）、销毁。"""

import asyncio
import json
import secrets
import time
from dataclasses import dataclass, asdict
from typing import Callable, Optional

from snapbot_core.domain.conversation import KeyValueStore
from snapbot_core.infrastructure.logging.logger import logger
from snapbot_core.security.fingerprint import DeviceFingerprint

SESSION_KEY = "chat_session"


@dataclass
class Session:
    id: str
    created_at: float
    last_activity: float
    device_fingerprint: str


@dataclass
class SessionCheck:
    valid: bool
    session_id: Optional[str] = None


class SessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        fingerprint: DeviceFingerprint,
        timeout: float = 1800.0,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._fingerprint = fingerprint
        self.timeout = timeout
        self._clock = clock
        self._lock = asyncio.Lock()

    async def create_session(self) -> str:
        now = self._clock()
        session = Session(
            id=f"session_{int(now * 1000)}_{secrets.token_hex(6)}",
            created_at=now,
            last_activity=now,
            device_fingerprint=self._fingerprint.generate(),
        )
        await self._store.set(SESSION_KEY, json.dumps(asdict(session)))
        logger.info("Created chat session", extra={"extra": {"session_id": session.id}})
        return session.id

    async def validate_session(self) -> SessionCheck:
        async with self._lock:
            try:
                stored = await self._store.get(SESSION_KEY)
                if not stored:
                    return SessionCheck(valid=False)
                session = Session(**json.loads(stored))
                now = self._clock()

                if now - session.last_activity > self.timeout:
                    logger.info("Chat session expired", extra={"extra": {"session_id": session.id}})
                    await self.destroy_session()
                    return SessionCheck(valid=False)

                if session.device_fingerprint != self._fingerprint.generate():
                    logger.warning("Session fingerprint mismatch", extra={"extra": {"session_id": session.id}})
                    await self.destroy_session()
                    return SessionCheck(valid=False)

                session.last_activity = now
                await self._store.set(SESSION_KEY, json.dumps(asdict(session)))
                return SessionCheck(valid=True, session_id=session.id)
            except Exception as e:
                logger.warning("Session validation failed", extra={"extra": {"error": str(e)}})
                return SessionCheck(valid=False)

    async def destroy_session(self) -> None:
        try:
            await self._store.remove(SESSION_KEY)
        except Exception as e:
            logger.warning("Session destruction failed", extra={"extra": {"error": str(e)}})

    async def ensure_session(self) -> Optional[str]:
        """校验当前会话，无效时新建；存储不可用时返回 None。"""
        check = await self.validate_session()
        if check.valid:
            return check.session_id
        try:
            return await self.create_session()
        except Exception as e:
            logger.warning("Session creation failed", extra={"extra": {"error": str(e)}})
            return None
