"""统一业务异常模型。

库内所有对外抛出的错误都继承自 BusinessError，
调用方可以只捕获 BusinessError，也可以按具体类型区分处理：

- AuthError: 会话令牌被拒绝、过期或格式错误，不会在内部重试。
- NetworkError: 连接失败、请求超时等，调用方可以整体重试。
- StreamError: 流式响应失败（没有任何有效事件、提前断开、空闲超时）。
- DecodeError: 单个流事件解析失败，只在解析器内部记录并跳过。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "SESSION_REJECTED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 request_id、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class AuthError(BusinessError):
    """会话令牌或访问令牌被服务端拒绝。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class StreamError(BusinessError):
    """流式响应无法完成：没有有效事件、提前断开或空闲超时。"""


class DecodeError(BusinessError):
    """单个流事件无法解析。"""


class ApiError(BusinessError):
    """服务端返回非 2xx 且不属于认证失败的响应时抛出。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
