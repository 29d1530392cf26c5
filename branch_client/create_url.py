"""创建短链接请求

失败时（启用 default_to_long_url 的情况下）在本地用同一组属性生成长链接
作为替代结果；服务端报告重复（409）时不做替代。
"""

import logging
from typing import Any, Dict, Optional

from .defines import JsonKey, PrefKey, RequestPath
from .errors import (
    ERR_BRANCH_DUPLICATE_URL,
    HTTP_CONFLICT,
    BranchError,
    DuplicateResourceError,
    Err,
    RequestOutcome,
    Result,
)
from .link_data import LinkProperties, build_link_data, link_cache_key
from .long_url import choose_base_url, generate_long_url
from .prefs import PreferenceStore
from .server_request import RequestCallback, RequestContext, RequestKind, ServerRequest
from .transport import ServerResponse

logger = logging.getLogger("branch_client")


class ServerRequestCreateUrl(ServerRequest):
    """创建短链接（同步或异步）"""

    kind = RequestKind.CREATE_URL
    fail_message = "Trouble creating a URL."
    retry_eligible = False

    def __init__(
        self,
        prefs: PreferenceStore,
        link_properties: Optional[LinkProperties] = None,
        callback: Optional[RequestCallback] = None,
        asynchronous: bool = True,
        default_to_long_url: bool = True,
        payload: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            prefs: 偏好存储
            link_properties: 链接属性
            callback: 回调 (url, error)
            asynchronous: 调用方是否异步等待结果
            default_to_long_url: 失败时是否返回本地生成的长链接
            payload: 已组装好的请求体（恢复时使用）
        """
        super().__init__(prefs, RequestPath.GET_URL.value, callback=callback, payload=payload)
        self.link_properties = link_properties or LinkProperties()
        self._asynchronous = asynchronous
        self._default_to_long_url = default_to_long_url
        self._branch_key = ""
        self._tracking_disabled = False
        # 回退时保存原始错误，便于内部区分“降级结果”与真正成功
        self.fallback_error: Optional[BranchError] = None

    def _build_payload(self, context: RequestContext) -> Dict[str, Any]:
        self._branch_key = context.branch_key
        self._tracking_disabled = context.tracking_disabled

        payload: Dict[str, Any] = {JsonKey.BRANCH_KEY: context.branch_key}
        # 禁止追踪时不携带任何身份字段
        if not context.tracking_disabled:
            for json_key, pref_key in (
                (JsonKey.IDENTITY_ID, PrefKey.IDENTITY_ID),
                (JsonKey.DEVICE_FINGERPRINT_ID, PrefKey.DEVICE_FINGERPRINT_ID),
                (JsonKey.SESSION_ID, PrefKey.SESSION_ID),
                (JsonKey.LINK_CLICK_ID, PrefKey.LINK_CLICK_ID),
            ):
                value = self.prefs.get_string(pref_key)
                if value is not None:
                    payload[json_key] = value

        payload.update(build_link_data(self.link_properties))
        return payload

    def is_async(self) -> bool:
        return self._asynchronous

    def is_default_to_long_url(self) -> bool:
        return self._default_to_long_url

    def executes_without_tracking(self) -> bool:
        # 禁止追踪时仍允许创建短链接（请求体中已去掉身份字段）
        return True

    def cache_key(self) -> str:
        return link_cache_key(build_link_data(self.link_properties))

    def on_success(self, response: ServerResponse) -> None:
        url = response.get(JsonKey.URL)
        if not url:
            logger.warning("创建链接响应缺少 url 字段: %r", response)
            self.on_failure(response.status_code, "Response is missing url.")
            return
        self._finish(RequestOutcome.SUCCEEDED, str(url), None)

    def on_url_available(self, url: str) -> None:
        """缓存中已有同属性链接时直接回调"""
        self._finish(RequestOutcome.SUCCEEDED, url, None)

    def on_failure(self, status_code: int, message: str) -> RequestOutcome:
        if status_code == HTTP_CONFLICT:
            self.handle_duplicate_url_error()
            return self.outcome

        error = BranchError(f"{self.fail_message} {message}".rstrip(), status_code)
        if not self._default_to_long_url:
            self._finish(RequestOutcome.FAILED, None, error)
            return self.outcome

        result = self.get_long_url()
        if isinstance(result, Err):
            self._finish(
                RequestOutcome.FAILED,
                None,
                BranchError(self.fail_message, result.error.code),
            )
            return self.outcome

        logger.info("短链接创建失败（%d），返回本地长链接", status_code)
        self.fallback_error = error
        self._finish(RequestOutcome.FALLBACK_PRODUCED, result.unwrap(), None)
        return self.outcome

    def handle_duplicate_url_error(self) -> None:
        error = BranchError(self.fail_message, ERR_BRANCH_DUPLICATE_URL)
        self.cause = DuplicateResourceError(error.message, ERR_BRANCH_DUPLICATE_URL)
        self._finish(RequestOutcome.DUPLICATE, None, error)

    def get_long_url(self, tracking_disabled: Optional[bool] = None) -> Result:
        """
        生成长链接（不发起网络请求）

        Args:
            tracking_disabled: 覆盖请求组装时记录的追踪开关
        """
        disabled = self._tracking_disabled if tracking_disabled is None else tracking_disabled
        base_url = choose_base_url(self.prefs.get_string(PrefKey.USER_URL), self._branch_key)
        return generate_long_url(base_url, self.link_properties, disabled, self._branch_key)
