"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
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


class MalformedMetadataException(BusinessException):
    """支付元数据令牌无法解码或签名不匹配"""

    def __init__(self, reason: str):
        super().__init__(
            code=PaymentCode.METADATA_MALFORMED,
            message=f"Malformed payment metadata: {reason}",
            error_type="MalformedMetadata",
            details={"reason": reason},
            field="token",
        )


class CartNotFoundException(BusinessException):
    def __init__(self, cart_id: Optional[int] = None):
        details = {"cart_id": cart_id} if cart_id is not None else None
        super().__init__(
            code=BusinessCode.CART_NOT_FOUND,
            message="Cart not found",
            error_type="CartNotFound",
            details=details,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None):
        details = {"order_id": order_id} if order_id is not None else None
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message=f"Order with id {order_id} not found",
            error_type="OrderNotFound",
            details=details,
        )


class OrderAlreadyExistsException(BusinessException):
    """同一购物车已生成订单（并发成功路径的冲突）"""

    def __init__(self, cart_id: int):
        super().__init__(
            code=BusinessCode.ORDER_ALREADY_EXISTS,
            message=f"Order already exists for cart {cart_id}",
            error_type="OrderAlreadyExists",
            details={"cart_id": cart_id},
        )


class IntentUnresolvedException(BusinessException):
    """无法解析支付意图ID，浏览器路径应重定向回结账页"""

    def __init__(self, reference: str, reason: Optional[str] = None):
        super().__init__(
            code=PaymentCode.INTENT_UNRESOLVED,
            message=f"Failed to resolve payment intent for {reference}",
            error_type="IntentUnresolved",
            details={"reference": reference, "reason": reason},
        )


class ParameterMismatchException(BusinessException):
    def __init__(self, parameter: str):
        super().__init__(
            code=PaymentCode.PARAMETER_MISMATCH,
            message=f"Invalid parameter {parameter}",
            error_type="ParameterMismatch",
            field=parameter,
        )


class PaymentMethodUnavailableException(BusinessException):
    def __init__(self, method_id: str):
        super().__init__(
            code=PaymentCode.METHOD_UNAVAILABLE,
            message=f"Payment method {method_id} is not available",
            error_type="PaymentMethodUnavailable",
            details={"method_id": method_id},
        )


class MetadataValidationException(BusinessException):
    """令牌与购物车/支付方式交叉校验失败，errors 为可展示的错误列表"""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            code=PaymentCode.METADATA_INVALID,
            message="; ".join(self.errors),
            error_type="MetadataValidationError",
            details={"errors": self.errors},
        )


class PaymentIntentStatusException(BusinessException):
    def __init__(self, intent_id: str, status: str):
        super().__init__(
            code=PaymentCode.INTENT_STATUS_INVALID,
            message=f"Payment intent has invalid status: {status}",
            error_type="PaymentIntentStatusInvalid",
            details={"intent_id": intent_id, "status": status},
        )
