"""服务端请求描述符

每个 ServerRequest 对应一次 API 调用：持有请求体、目标路径和回调，
并自行决定成功/失败时如何更新偏好存储、如何回调宿主应用。
调度器只关心请求类型标签、是否可重试以及失败是否终止。
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Type

from .config import ClientConfig
from .errors import (
    ERR_BRANCH_INVALID_REQUEST,
    ERR_NO_INTERNET_PERMISSION,
    BranchClientError,
    BranchError,
    ConstructionError,
    Err,
    MissingPermissionError,
    Ok,
    RequestOutcome,
    Result,
)
from .identity import IdentitySnapshot
from .prefs import PreferenceStore
from .transport import ServerResponse

logger = logging.getLogger("branch_client")

# 回调签名：(结果, 错误)，两者至多一个为 None 以外的值（回退链接除外）
RequestCallback = Callable[[Any, Optional[BranchError]], None]


class RequestKind(str, Enum):
    """请求类型（封闭集合）"""

    REGISTER_INSTALL = "register_install"
    CREATE_URL = "create_url"


@dataclass(frozen=True)
class RequestContext:
    """组装请求体和检查前置条件时需要的环境信息"""

    branch_key: str
    tracking_disabled: bool = False
    has_network_permission: bool = True
    app_version: str = ""

    @classmethod
    def from_config(cls, config: ClientConfig, tracking_disabled: Optional[bool] = None) -> "RequestContext":
        return cls(
            branch_key=config.branch_key,
            tracking_disabled=config.tracking_disabled if tracking_disabled is None else tracking_disabled,
            has_network_permission=config.has_network_permission,
            app_version=config.app_version,
        )


class ServerRequest:
    """请求描述符基类"""

    kind: RequestKind
    # 创建链接 / 初始化会话时回调里使用的失败前缀
    fail_message = "Trouble completing the request."
    retry_eligible = False

    def __init__(
        self,
        prefs: PreferenceStore,
        endpoint: str,
        callback: Optional[RequestCallback] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        self.prefs = prefs
        self._endpoint = str(endpoint)
        self._callback = callback
        self._payload: Dict[str, Any] = dict(payload) if payload is not None else {}
        self._restored = payload is not None
        self._frozen = False
        self.construction_failed = False
        self.construction_error: Optional[ConstructionError] = None
        # 内部错误分类，便于区分失败原因（回调中只交付 BranchError）
        self.cause: Optional[BranchClientError] = None
        self.outcome = RequestOutcome.PENDING
        self.result: Any = None
        self.error: Optional[BranchError] = None
        self.retry_number = 0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._endpoint} outcome={self.outcome.value}>"

    # ============ 请求体 ============

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def payload(self) -> Mapping[str, Any]:
        """冻结后返回只读视图"""
        if self._frozen:
            return MappingProxyType(self._payload)
        return self._payload

    def put(self, key: str, value: Any) -> None:
        if self._frozen:
            raise RuntimeError(f"{self!r} 已发送，请求体不可再修改")
        self._payload[key] = value

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def prepare(self, context: RequestContext) -> Result:
        """
        组装请求体

        组装失败时请求被永久标记为无效，不会发送也不会重试。

        Returns:
            Ok(payload) 或 Err(ConstructionError)
        """
        if self.construction_failed:
            return Err(self.construction_error)
        if self._restored:
            return Ok(self._payload)
        try:
            self._payload = self._build_payload(context)
        except (TypeError, ValueError, KeyError) as e:
            logger.error("%s 请求体组装失败: %s", type(self).__name__, e)
            self.construction_failed = True
            self.construction_error = ConstructionError(
                f"{self.fail_message} {e}", ERR_BRANCH_INVALID_REQUEST
            )
            self.cause = self.construction_error
            return Err(self.construction_error)
        return Ok(self._payload)

    def _build_payload(self, context: RequestContext) -> Dict[str, Any]:
        raise NotImplementedError

    # ============ 生命周期钩子 ============

    def validate_preconditions(self, context: RequestContext) -> Optional[BranchError]:
        """检查前置条件；不满足时立即回调错误并返回该错误"""
        if not context.has_network_permission:
            error = BranchError(self.fail_message, ERR_NO_INTERNET_PERMISSION)
            self.cause = MissingPermissionError(error.message, ERR_NO_INTERNET_PERMISSION)
            self._finish(RequestOutcome.REJECTED, None, error)
            return error
        return None

    def on_pre_execute(self, identity: IdentitySnapshot, context: RequestContext) -> None:
        """发送前合并异步解析得到的信息，默认不做任何事"""

    def on_success(self, response: ServerResponse) -> None:
        raise NotImplementedError

    def on_failure(self, status_code: int, message: str) -> RequestOutcome:
        raise NotImplementedError

    def reject(self, error: BranchError) -> None:
        """调度器在发送前放弃请求时调用（构造失败、追踪已禁用等）"""
        self._finish(RequestOutcome.REJECTED, None, error)

    # ============ 属性 ============

    def is_retry_eligible(self) -> bool:
        return self.retry_eligible

    def is_persistable(self) -> bool:
        """失败后是否写入待发送队列，在下次启动时恢复"""
        return False

    def executes_without_tracking(self) -> bool:
        """禁止追踪模式下是否仍允许发送"""
        return False

    def dedup_key(self) -> Optional[str]:
        """同一键的请求同时只允许一个在途"""
        return None

    def clear_callbacks(self) -> None:
        """释放回调引用，之后请求仍会更新状态，但不会再回调"""
        self._callback = None

    @property
    def has_callback(self) -> bool:
        return self._callback is not None

    def _finish(self, outcome: RequestOutcome, value: Any, error: Optional[BranchError]) -> None:
        self.outcome = outcome
        self.result = value
        self.error = error
        callback = self._callback
        if callback is None:
            logger.debug("%r 无回调，跳过通知", self)
            return
        try:
            callback(value, error)
        except Exception as e:
            logger.error("%r 回调执行出错: %s", self, e)

    # ============ 持久化 ============

    def to_json(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "endpoint": self._endpoint,
            "payload": dict(self._payload),
        }


# 可从持久化队列恢复的请求类型
REQUEST_REGISTRY: Dict[RequestKind, Type[ServerRequest]] = {}


def request_from_json(prefs: PreferenceStore, data: Mapping[str, Any]) -> Optional[ServerRequest]:
    """从持久化数据恢复请求，未知类型返回 None"""
    try:
        kind = RequestKind(data.get("kind"))
    except ValueError:
        logger.warning("忽略未知类型的持久化请求: %s", data.get("kind"))
        return None
    request_cls = REQUEST_REGISTRY.get(kind)
    payload = data.get("payload")
    if request_cls is None or not isinstance(payload, dict):
        logger.warning("无法恢复持久化请求: %s", kind.value)
        return None
    return request_cls(prefs, payload=payload)
