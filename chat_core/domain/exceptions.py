"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在外层（HTTP 壳、任务调度等）做统一捕获与用户提示。

同步路径上的错误（InvalidInputError / NotFoundError / StorageError）
会直接抛给调用方；生成回复的后台流水线只会产生
QuotaExceededError 与 GenerationError，它们只记录、不回传。
"""

from typing import Any, Dict


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、provider 等）。
    """

    http_status_default = 400

    def __init__(self, code: str, message: str, http_status: int | None = None, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status or self.http_status_default
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """结构化错误结果，供外层直接序列化。"""

        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "http_status": self.http_status,
        }
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload


class InvalidInputError(BusinessError):
    """调用方传入的字段为空或格式不合法。"""


class NotFoundError(BusinessError):
    """记录不存在或不属于调用方（两者不做区分，避免泄露存在性）。"""

    http_status_default = 404


class StorageError(BusinessError):
    """底层文档存储不可用或读写失败。"""

    http_status_default = 500


class QuotaExceededError(BusinessError):
    """Provider 报告限流或额度/计费问题。"""

    http_status_default = 429


class GenerationError(BusinessError):
    """除额度外的所有生成失败（网络、API、空结果等）。"""

    http_status_default = 502


class NetworkError(GenerationError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(GenerationError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class ConfigurationError(GenerationError):
    """Provider 配置缺失，例如未设置 API Key。"""


class ContextPreconditionError(GenerationError):
    """上下文窗口不满足调用条件（为空或最后一条不是用户消息）。"""
