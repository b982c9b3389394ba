"""调用方身份 -- 由上游认证层注入

认证/会话签发不在本服务范围内：上游网关校验会话后，
通过 X-User-Id（以及管理员的 X-User-Role: admin）请求头转发调用方身份。
"""

from fastapi import Request
from pydantic import BaseModel
from storefront.core.exceptions import AuthError, AuthorizationError

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


class Principal(BaseModel):
    """已认证的调用方"""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def principal_from_request(request: Request) -> Principal | None:
    """解析请求头中的调用方身份，缺失返回 None"""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        return None
    role = request.headers.get(USER_ROLE_HEADER, "user").strip().lower() or "user"
    return Principal(user_id=user_id, role=role)


def require_principal(request: Request) -> Principal:
    """FastAPI 依赖：要求已认证

    Raises:
        AuthError: 缺少调用方身份
    """
    principal = principal_from_request(request)
    if principal is None:
        raise AuthError("Authentication required")
    return principal


def require_admin(request: Request) -> Principal:
    """FastAPI 依赖：要求管理员

    Raises:
        AuthError: 缺少调用方身份
        AuthorizationError: 非管理员
    """
    principal = require_principal(request)
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")
    return principal
