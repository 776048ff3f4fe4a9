"""
业务异常定义

服务层只抛出这里的异常，由 utils.error_handlers 统一转换为
{"statusCode", "message", "error"} 格式的响应。
"""
from fastapi import status


class BusinessException(Exception):
    """业务异常基类"""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "BusinessError"
    default_message = "业务处理失败"

    def __init__(self, message: str = None, data: dict = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class NotFound(BusinessException):
    """资源不存在"""
    status_code = status.HTTP_404_NOT_FOUND
    error = "NotFound"
    default_message = "资源不存在"


class Forbidden(BusinessException):
    """无权操作"""
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"
    default_message = "无权执行此操作"


class Conflict(BusinessException):
    """资源冲突（重复创建等）"""
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
    default_message = "资源已存在"


class InvalidState(BusinessException):
    """当前状态不允许该操作"""
    status_code = status.HTTP_409_CONFLICT
    error = "InvalidState"
    default_message = "当前状态不允许此操作"


class ValidationError(BusinessException):
    """参数或金额校验失败"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "ValidationError"
    default_message = "参数校验失败"


class Precondition(BusinessException):
    """前置条件未满足"""
    status_code = status.HTTP_412_PRECONDITION_FAILED
    error = "Precondition"
    default_message = "前置条件未满足"


class AlreadySettled(Conflict):
    """活动已结算"""
    error = "AlreadySettled"
    default_message = "该活动已结算"


class AlreadyVerified(Conflict):
    """订单已核销"""
    error = "AlreadyVerified"
    default_message = "该订单已核销"


class GatewayError(BusinessException):
    """支付网关返回失败"""
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "GatewayError"
    default_message = "支付网关请求失败"


class GatewayTimeout(GatewayError):
    """支付网关超时"""
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error = "GatewayTimeout"
    default_message = "支付网关请求超时"
