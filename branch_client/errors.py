"""错误分类与结果类型

- BranchError: 通过回调交给宿主应用的错误对象（消息 + 数字错误码）
- BranchClientError 及其子类: 内部错误分类
- Ok / Err: 请求体组装等可预期失败的返回值，避免用异常做控制流
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")

# 错误码（与原生 SDK 保持一致）
ERR_NO_INTERNET_PERMISSION = -102
ERR_BRANCH_INIT_FAILED = -104
ERR_BRANCH_DUPLICATE_URL = -105
ERR_BRANCH_REQ_TIMED_OUT = -111
ERR_BRANCH_NO_CONNECTIVITY = -113
ERR_BRANCH_KEY_INVALID = -114
ERR_BRANCH_INVALID_REQUEST = -116
ERR_BRANCH_TRACKING_DISABLED = -117

HTTP_CONFLICT = 409

TROUBLE_REACHING_SERVER = "Trouble reaching server. Please try again in a few minutes"


def describe_error_code(code: int) -> str:
    """错误码对应的可读说明"""
    if code == ERR_NO_INTERNET_PERMISSION:
        return " Please add 'android.permission.INTERNET' in your applications manifest file."
    if code == ERR_BRANCH_INIT_FAILED:
        return " Trouble initializing Branch. Check network connectivity or that your branch key is valid."
    if code == ERR_BRANCH_DUPLICATE_URL:
        return " Unable to create a URL with that alias. If you want to reuse the alias, make sure to submit the same properties for all arguments and that the user is the same owner."
    if code == ERR_BRANCH_REQ_TIMED_OUT:
        return " The request to Branch server timed out. Please check your internet connectivity"
    if code == ERR_BRANCH_NO_CONNECTIVITY:
        return " Poor network connectivity. Please try again later."
    if code == ERR_BRANCH_KEY_INVALID:
        return " Branch API Error: Please check your Branch key."
    if code == ERR_BRANCH_INVALID_REQUEST:
        return " The request was invalid."
    if code == ERR_BRANCH_TRACKING_DISABLED:
        return " Tracking is disabled. Requested operation cannot be completed when tracking is disabled"
    if code == HTTP_CONFLICT:
        return " A resource with this identifier already exists."
    if code >= 500:
        return " Unable to reach the Branch servers, please try again shortly."
    if code >= 400:
        return " The request was invalid."
    return " Check network connectivity and that you properly initialized."


class BranchError:
    """回调中返回给宿主应用的错误"""

    def __init__(self, fail_msg: str, code: int):
        self.code = code
        self.message = f"{fail_msg}{describe_error_code(code)}"

    def __repr__(self) -> str:
        return f"BranchError(code={self.code}, message={self.message!r})"

    def __str__(self) -> str:
        return self.message


class BranchClientError(Exception):
    """内部错误基类"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ConstructionError(BranchClientError):
    """请求体组装失败，请求永久无效，不会被发送或重试"""


class MissingPermissionError(BranchClientError):
    """缺少平台能力（如网络权限），请求在发送前即失败"""


class TransportFailure(BranchClientError):
    """远程调用返回非成功状态码或无法完成"""


class DuplicateResourceError(BranchClientError):
    """服务端报告资源已存在，终止，无回退，无重试"""


class RequestOutcome(str, Enum):
    """描述请求的最终结果，回退结果可与真正成功区分"""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FALLBACK_PRODUCED = "fallback_produced"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


def is_terminal_status(status_code: int) -> bool:
    """4xx 与“追踪已禁用”视为终止性失败，其余（5xx、网络错误）可重试"""
    return 400 <= status_code <= 451 or status_code == ERR_BRANCH_TRACKING_DISABLED


@dataclass(frozen=True)
class Ok(Generic[T]):
    """成功结果"""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """失败结果，携带错误对象"""

    error: BranchClientError

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Any:
        raise self.error

    def unwrap_or(self, default: Any) -> Any:
        return default


Result = Union[Ok[T], Err]
