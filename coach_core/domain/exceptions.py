"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 store 层或宿主 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "API_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 session_id、endpoint 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、流式响应中途断开等。"""


class ApiError(BusinessError):
    """后端 API 返回非 2xx/429 错误，或流式响应缺少 body 时抛出。"""


class RateLimitError(BusinessError):
    """后端限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败（例如上传文件格式不支持）。"""


class StreamInterruptedError(NetworkError):
    """流式响应已开始读取后连接中断；已应用的增量保持不变。"""
