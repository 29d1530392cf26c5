"""安装注册请求

向服务端登记一次新安装，并把响应中的会话状态写回偏好存储。
安装参数是“粘性”的：只有在尚未设置时才会写入（首次写入生效）。
"""

import json
import logging
from typing import Any, Dict, Optional

from .defines import JsonKey, PrefKey, RequestPath
from .errors import TROUBLE_REACHING_SERVER, BranchError, RequestOutcome
from .identity import IdentitySnapshot
from .init_session import ServerRequestInitSession
from .prefs import PreferenceStore
from .server_request import REQUEST_REGISTRY, RequestCallback, RequestContext, RequestKind
from .transport import ServerResponse

logger = logging.getLogger("branch_client")


def _data_block(response: ServerResponse) -> Optional[str]:
    """响应中的 data 字段（JSON 字符串）；服务端直接返回对象时序列化为字符串"""
    if not response.has(JsonKey.DATA):
        return None
    data = response.get(JsonKey.DATA)
    if isinstance(data, str):
        return data
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _clicked_branch_link(data: str) -> bool:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("data 字段不是有效的 JSON，视为未点击链接")
        return False
    if not isinstance(parsed, dict):
        return False
    clicked = parsed.get(JsonKey.CLICKED_BRANCH_LINK)
    # 部分服务端以字符串返回布尔值
    if isinstance(clicked, str):
        return clicked.strip().lower() == "true"
    return clicked is True


class ServerRequestRegisterInstall(ServerRequestInitSession):
    """安装注册"""

    kind = RequestKind.REGISTER_INSTALL
    # 安装请求失败后需要重试
    retry_eligible = True

    def __init__(
        self,
        prefs: PreferenceStore,
        callback: Optional[RequestCallback] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(prefs, RequestPath.REGISTER_INSTALL.value, callback=callback, payload=payload)

    def on_pre_execute(self, identity: IdentitySnapshot, context: RequestContext) -> None:
        super().on_pre_execute(identity, context)
        clicked_referrer_ts = self.prefs.get_long(PrefKey.REFERRER_CLICK_TS)
        install_begin_ts = self.prefs.get_long(PrefKey.INSTALL_BEGIN_TS)
        install_click_id = self.prefs.get_string(PrefKey.INSTALL_REFERRER_CLICK_ID)
        if clicked_referrer_ts > 0:
            self.put(JsonKey.CLICKED_REFERRER_TS, clicked_referrer_ts)
        if install_begin_ts > 0:
            self.put(JsonKey.INSTALL_BEGIN_TS, install_begin_ts)
        if install_click_id:
            self.put(JsonKey.LINK_CLICK_ID, install_click_id)

    def on_success(self, response: ServerResponse) -> None:
        self._commit_session_identifiers(response)

        # 1. 用户长链接
        if response.has(JsonKey.LINK):
            self.prefs.set_string(PrefKey.USER_URL, str(response.get(JsonKey.LINK)))
        else:
            logger.warning("安装注册响应缺少 link 字段，保留原有用户长链接")

        data = _data_block(response)

        # 2. 点击过链接且尚无安装参数时才写入
        if data is not None and _clicked_branch_link(data):
            if self.prefs.set_string_if_unset(PrefKey.INSTALL_PARAMS, data):
                logger.info("已记录安装参数")
            else:
                logger.debug("安装参数已存在，保持不变")

        # 3. link_click_id
        if response.has(JsonKey.LINK_CLICK_ID):
            self.prefs.set_string(PrefKey.LINK_CLICK_ID, str(response.get(JsonKey.LINK_CLICK_ID)))
        else:
            self.prefs.set_string(PrefKey.LINK_CLICK_ID, None)

        # 4. 会话参数
        self.prefs.set_string(PrefKey.SESSION_PARAMS, data)

        # 5. 回调拿到的是已经更新后的会话参数
        self._finish(RequestOutcome.SUCCEEDED, self.get_latest_referring_params(), None)

        # 6. 最后写入 app 版本
        self.prefs.set_string(PrefKey.APP_VERSION, self._app_version)

    def on_failure(self, status_code: int, message: str) -> RequestOutcome:
        params = {JsonKey.ERROR_MESSAGE: TROUBLE_REACHING_SERVER}
        error = BranchError(f"{self.fail_message} {message}".rstrip(), status_code)
        self._finish(RequestOutcome.FAILED, params, error)
        return self.outcome

    def is_persistable(self) -> bool:
        return True


REQUEST_REGISTRY[RequestKind.REGISTER_INSTALL] = ServerRequestRegisterInstall
