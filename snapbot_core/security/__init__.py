"""安全策略层。

- fingerprint: 设备指纹。
- validation: 内容校验 (RequestValidator) 与清洗 (ContentSanitizer)。
- rate_limit: 按设备的滑动窗口限流。
- session: 会话创建、校验与销毁。
- signing: 请求签名。
- context: 将上述组件组装为可注入的 SecurityContext。
"""

from snapbot_core.security.context import SecurityContext
from snapbot_core.security.fingerprint import DeviceFingerprint
from snapbot_core.security.rate_limit import EnhancedRateLimiter, RateLimitDecision
from snapbot_core.security.session import SessionManager, SessionCheck
from snapbot_core.security.signing import RequestSecurity
from snapbot_core.security.validation import ContentSanitizer, RequestValidator, ValidationResult

__all__ = [
    "SecurityContext",
    "DeviceFingerprint",
    "EnhancedRateLimiter",
    "RateLimitDecision",
    "SessionManager",
    "SessionCheck",
    "RequestSecurity",
    "ContentSanitizer",
    "RequestValidator",
    "ValidationResult",
]
