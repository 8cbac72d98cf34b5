"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Iterable, Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class MissingFieldsException(BusinessException):
    """请求缺少必填字段"""

    def __init__(self, fields: Iterable[str]):
        missing = list(fields)
        super().__init__(
            code=BusinessCode.PARAM_MISSING,
            message="Missing required fields",
            error_type="ValidationError",
            details={"missing": missing},
            field=missing[0] if missing else None,
        )


class UnknownPlanException(BusinessException):
    def __init__(self, plan_id: str):
        super().__init__(
            code=PaymentCode.UNKNOWN_PLAN,
            message="Invalid plan selected",
            error_type="UnknownPlan",
            details={"plan_id": plan_id},
            field="planId",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class OrderAlreadyExistsException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Order {order_id} already exists",
            error_type="DuplicateKey",
            details={"order_id": order_id},
        )


class InvalidOrderTransitionException(BusinessException):
    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Order {order_id} cannot move from {current} to {target}",
            error_type="InvalidTransition",
            details={"order_id": order_id, "current": current, "target": target},
        )


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details=details,
        )


class UserAlreadyExistsException(BusinessException):
    def __init__(self, user_id: str):
        super().__init__(
            code=BusinessCode.USER_ALREADY_EXISTS,
            message=f"User {user_id} already exists",
            error_type="UserAlreadyExists",
            details={"user_id": user_id},
            field="user_id",
        )


class PersistenceException(BusinessException):
    """存储层不可用或写入失败"""

    def __init__(self, message: str = "Persistence failure", *, operation: str | None = None):
        super().__init__(
            code=BusinessCode.DATABASE_ERROR,
            message=message,
            error_type="PersistenceError",
            details={"operation": operation} if operation else None,
        )


class PaymentGatewayError(BusinessException):
    """支付网关调用失败的基类（502，调用方可重试）"""

    def __init__(
        self,
        message: str,
        *,
        code: int,
        error_type: str,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )


class PaymentProviderError(PaymentGatewayError):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="PaymentProviderError",
            provider=provider,
            provider_code=provider_code,
            details=details,
        )


class PaymentRecoverableError(PaymentGatewayError):
    """超时、限流、网络抖动等可恢复错误"""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentRecoverableError",
            provider=provider,
            provider_code=provider_code,
            details=details,
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )
