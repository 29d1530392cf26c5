"""会话初始化请求族

安装注册等会话类请求共享的部分：设备信息、身份字段，以及成功后
写回 session_id / identity_id / device_fingerprint_id。
"""

import json
import logging
from typing import Any, Dict, Optional

from .defines import JsonKey, PrefKey
from .identity import IdentitySnapshot
from .server_request import RequestContext, ServerRequest
from .transport import ServerResponse
from .version import get_device_info

logger = logging.getLogger("branch_client")


def parse_params(raw: Optional[str]) -> Dict[str, Any]:
    """把存储中的参数 JSON 字符串解析为字典，无效内容返回空字典"""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("参数不是有效的 JSON: %s", raw[:100])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ServerRequestInitSession(ServerRequest):
    """会话初始化请求基类"""

    fail_message = "Trouble initializing Branch."

    def __init__(self, prefs, endpoint, callback=None, payload=None):
        super().__init__(prefs, endpoint, callback=callback, payload=payload)
        self._app_version = ""
        if payload is not None:
            self._app_version = str(payload.get(JsonKey.APP_VERSION, ""))

    def _build_payload(self, context: RequestContext) -> Dict[str, Any]:
        self._app_version = context.app_version
        payload: Dict[str, Any] = {JsonKey.BRANCH_KEY: context.branch_key}
        for json_key, pref_key in (
            (JsonKey.IDENTITY_ID, PrefKey.IDENTITY_ID),
            (JsonKey.DEVICE_FINGERPRINT_ID, PrefKey.DEVICE_FINGERPRINT_ID),
        ):
            value = self.prefs.get_string(pref_key)
            if value is not None:
                payload[json_key] = value
        if context.app_version:
            payload[JsonKey.APP_VERSION] = context.app_version
        payload.update(get_device_info())
        return payload

    def on_pre_execute(self, identity: IdentitySnapshot, context: RequestContext) -> None:
        if identity.installation_id:
            self.put(JsonKey.HARDWARE_ID, identity.installation_id)
            self.put(JsonKey.IS_HARDWARE_ID_REAL, False)
        if context.tracking_disabled:
            return
        self.put(JsonKey.LAT_VAL, 1 if identity.limit_tracking else 0)
        if identity.advertising_id and not identity.limit_tracking:
            self.put(JsonKey.ADVERTISING_IDS, {JsonKey.AAID: identity.advertising_id})

    def dedup_key(self) -> Optional[str]:
        return "init_session"

    def _commit_session_identifiers(self, response: ServerResponse) -> None:
        for json_key, pref_key in (
            (JsonKey.SESSION_ID, PrefKey.SESSION_ID),
            (JsonKey.IDENTITY_ID, PrefKey.IDENTITY_ID),
            (JsonKey.DEVICE_FINGERPRINT_ID, PrefKey.DEVICE_FINGERPRINT_ID),
        ):
            if response.has(json_key):
                self.prefs.set_string(pref_key, str(response.get(json_key)))

    def get_latest_referring_params(self) -> Dict[str, Any]:
        return parse_params(self.prefs.get_string(PrefKey.SESSION_PARAMS))
