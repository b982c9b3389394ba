"""Storefront 异常体系

每个异常携带机器可读的 code 与 HTTP status_code，
由 gateway 的异常处理器统一渲染为 {"error": {...}} 结构。
"""

from typing import Any


class StorefrontError(Exception):
    """Storefront 基础异常"""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """
        Args:
            message: 面向调用方的错误描述
            code: 覆盖类默认的错误码
            details: 字段级错误明细
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or []


class ValidationError(StorefrontError):
    """输入格式错误"""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(StorefrontError):
    """未认证（缺少调用方身份）"""

    code = "AUTH_REQUIRED"
    status_code = 401


class AuthorizationError(StorefrontError):
    """已认证但无权限"""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(StorefrontError):
    """引用的资源不存在"""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(StorefrontError):
    """非法状态流转，或唯一约束冲突上升为业务冲突"""

    code = "CONFLICT"
    status_code = 409


class PaymentError(StorefrontError):
    """支付服务拒绝请求（卡被拒、参数非法等）"""

    code = "PAYMENT_ERROR"
    status_code = 402


class ExternalServiceError(StorefrontError):
    """外部服务不可达"""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class InfrastructureError(StorefrontError):
    """存储层不可用"""

    code = "DATABASE_ERROR"
    status_code = 500


DatabaseError = InfrastructureError
