"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

注意：工具层面的逻辑错误（例如未暂存就提交）不走异常，
而是作为普通工具结果文本返回给模型。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流/配额错误。上层只做一次友好提示，不自动重试。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class SynthesisError(BusinessError):
    """语音合成失败（主合成服务或本地兜底）。"""


class PlaybackError(BusinessError):
    """音频播放失败。"""
