import time
from typing import Callable, Optional

from snapbot_core.config.settings import Settings, settings as default_settings
from snapbot_core.domain.conversation import KeyValueStore
from snapbot_core.security.fingerprint import AttributesProvider, DeviceFingerprint, default_device_attributes
from snapbot_core.security.rate_limit import EnhancedRateLimiter
from snapbot_core.security.session import SessionManager
from snapbot_core.security.signing import RequestSecurity
from snapbot_core.security.validation import ContentSanitizer, RequestValidator


class SecurityContext:
    """一组共享同一存储、配置、时钟与设备指纹的安全组件。

    每个实例独立缓存设备指纹，测试可以为每个用例构造新的上下文。
    """

    def __init__(
        self,
        store: KeyValueStore,
        cfg: Optional[Settings] = None,
        device_attributes: Optional[AttributesProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        cfg = cfg or default_settings
        self.settings = cfg
        self.fingerprint = DeviceFingerprint(
            device_attributes or (lambda: default_device_attributes(cfg)),
            clock=clock,
        )
        self.validator = RequestValidator(max_length=cfg.max_message_length)
        self.sanitizer = ContentSanitizer()
        self.rate_limiter = EnhancedRateLimiter(
            store,
            self.fingerprint,
            max_requests=cfg.rate_limit_requests,
            window=cfg.rate_limit_window,
            block_seconds=cfg.rate_limit_block_seconds,
            fail_open=cfg.rate_limit_fail_open,
            clock=clock,
        )
        self.sessions = SessionManager(store, self.fingerprint, timeout=cfg.session_timeout, clock=clock)
        self.signer = RequestSecurity(self.fingerprint, cfg.app_secret, clock=clock)
