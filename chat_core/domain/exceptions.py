"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获并映射为 HTTP 状态码：

- InvalidArgument    -> 400（必填字段缺失或为空）
- NotFound           -> 404（路由不存在）
- UpstreamModelError -> 500（模型调用失败或超时，不做任何持久化）
- StorageError       -> 500（存储读写失败，写入路径上按“尽力而为”降级）
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 session_id、provider 等）。
    """

    default_code = "BUSINESS_ERROR"
    default_status = 400

    def __init__(self, code: str = "", message: str = "", http_status: int = 0, **extra):
        self.code = code or self.default_code
        self.message = message
        self.http_status = http_status or self.default_status
        self.extra = extra
        super().__init__(message)


class InvalidArgument(BusinessError):
    """参数缺失或为空。"""

    default_code = "INVALID_ARGUMENT"
    default_status = 400


class ValidationError(InvalidArgument):
    """配置校验失败（例如 Provider 密钥缺失）。"""


class NotFound(BusinessError):
    """请求的路由或资源不存在。"""

    default_code = "NOT_FOUND"
    default_status = 404


class UpstreamModelError(BusinessError):
    """外部模型调用失败。"""

    default_code = "UPSTREAM_MODEL_ERROR"
    default_status = 500


class NetworkError(UpstreamModelError):
    """网络层错误，例如连接失败、超时等。"""

    default_code = "NETWORK_ERROR"


class ApiError(UpstreamModelError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""

    default_code = "API_ERROR"


class RateLimitError(UpstreamModelError):
    """Provider 限流错误。"""

    default_code = "RATE_LIMIT"


class StorageError(BusinessError):
    """消息存储读写失败。"""

    default_code = "STORE_ERROR"
    default_status = 500
