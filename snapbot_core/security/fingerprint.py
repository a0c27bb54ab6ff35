"""设备指纹。

由一组静态的设备/平台属性派生出稳定的标识，用于按设备隔离限流与会话状态。
结果缓存在实例上（随 SecurityContext 的生命周期），不做模块级单例。
"""

import hashlib
import json
import platform
import time
from typing import Any, Callable, Mapping, Optional

from snapbot_core.infrastructure.logging.logger import logger

AttributesProvider = Callable[[], Mapping[str, Any]]


def default_device_attributes(cfg) -> dict:
    """读取当前运行平台与应用标识（不含主机名，改名不影响指纹）。"""

    uname = platform.uname()
    return {
        "machine": uname.machine or "unknown",
        "os_name": uname.system or "unknown",
        "os_version": uname.release or "unknown",
        "application_id": cfg.app_id or "unknown",
        "application_name": cfg.app_name or "unknown",
        "application_version": cfg.app_version or "unknown",
    }


class DeviceFingerprint:
    def __init__(self, attributes: AttributesProvider, clock: Callable[[], float] = time.time):
        self._attributes = attributes
        self._clock = clock
        self._fingerprint: Optional[str] = None

    def generate(self) -> str:
        if self._fingerprint:
            return self._fingerprint
        try:
            data = json.dumps(dict(self._attributes()), sort_keys=True, ensure_ascii=False, default=str)
            digest = hashlib.sha256(data.encode("utf-8")).hexdigest()[:24]
            self._fingerprint = f"device_{digest}"
        except Exception as e:
            logger.warning("Failed to generate device fingerprint", extra={"extra": {"error": str(e)}})
            self._fingerprint = f"fallback-{int(self._clock() * 1000)}"
        return self._fingerprint

    def verify(self, candidate: str) -> bool:
        return self.generate() == candidate

    def reset(self) -> None:
        """清空缓存，下次 generate 时重新计算。"""
        self._fingerprint = None
