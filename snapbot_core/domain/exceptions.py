"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在编排层（ChatEngine）或 UI 层做统一捕获与用户提示。

`kind` 是面向调用方的错误分类：
validation / rate_limit / auth / network / api / decode / storage / unknown。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 reset_time、provider 等）。
    """

    kind = "unknown"

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message, "status": self.http_status}


class ValidationError(BusinessError):
    """参数、内容或配置校验失败，不会触达网络。"""

    kind = "validation"


class RateLimitError(BusinessError):
    """限流错误：本地滑动窗口拒绝，或上游 Provider 返回 429。"""

    kind = "rate_limit"


class AuthError(BusinessError):
    """上游拒绝了凭证（HTTP 401）。"""

    kind = "auth"


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等（未收到响应）。"""

    kind = "network"


class ApiError(BusinessError):
    """第三方 API 返回其他错误状态时抛出。"""

    kind = "api"


class ServerError(ApiError):
    """上游 5xx。"""


class DecodeError(BusinessError):
    """流式响应中出现无法解析的帧。"""

    kind = "decode"


class StorageError(BusinessError):
    """持久化存储读写失败。"""

    kind = "storage"
