from typing import Optional
from fastapi import HTTPException

class CustomException(HTTPException):
    def __init__(self, code: str, message: str, dev_message: str = "", status_code: int = 400, detail: str = ""):
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.dev_message = dev_message
        self.detail = detail

    def to_dict(self):
        return {
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "dev_message": self.dev_message
        }


class DeployError(Exception):
    """배포 서브시스템 도메인 에러의 공통 부모"""
    code = "DEPLOY_ERROR"
    status_code = 500

    def __init__(self, message: str, dev_message: str = ""):
        super().__init__(message)
        self.message = message
        self.dev_message = dev_message


class ConfigurationError(DeployError):
    code = "CONFIG_ERROR"
    status_code = 500


class ResolutionError(DeployError):
    code = "RESOLUTION_ERROR"
    status_code = 422


class PreconditionError(DeployError):
    code = "PRECONDITION_FAILED"
    status_code = 422


class GatewayError(DeployError):
    code = "GATEWAY_ERROR"
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, dev_message: str = ""):
        super().__init__(message, dev_message=dev_message)
        self.status = status


class OperationNotAllowed(DeployError):
    code = "OPERATION_NOT_ALLOWED"
    status_code = 403

    def __init__(self, kind: str, value: str):
        super().__init__("operation not allowed", dev_message=f"{kind} not in allowlist: {value}")
        self.kind = kind
        self.value = value


class InvalidCommandArgument(DeployError):
    code = "INVALID_ARGUMENT"
    status_code = 400


class InvalidLogPointer(DeployError):
    code = "INVALID_LOG_POINTER"
    status_code = 400


class DeployNotFound(DeployError):
    code = "DEPLOY_NOT_FOUND"
    status_code = 404


def to_http_exception(err: DeployError) -> CustomException:
    return CustomException(
        code=err.code,
        message=err.message,
        dev_message=err.dev_message or err.message,
        status_code=err.status_code,
    )
