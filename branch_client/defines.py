"""Branch 协议常量定义。

请求路径、请求/响应 JSON 字段名、长链接参数名以及偏好存储键名。
"""

from enum import Enum


class RequestPath(str, Enum):
    """服务端 API 路径"""

    REGISTER_INSTALL = "v1/install"
    GET_URL = "v1/url"


class JsonKey:
    """请求体与响应体字段名"""

    BRANCH_KEY = "branch_key"
    IDENTITY_ID = "identity_id"
    DEVICE_FINGERPRINT_ID = "device_fingerprint_id"
    SESSION_ID = "session_id"
    LINK_CLICK_ID = "link_click_id"
    CLICKED_REFERRER_TS = "clicked_referrer_ts"
    INSTALL_BEGIN_TS = "install_begin_ts"
    LINK = "link"
    URL = "url"
    DATA = "data"
    CLICKED_BRANCH_LINK = "clicked_branch_link"
    APP_VERSION = "app_version"
    OS = "os"
    OS_VERSION = "os_version"
    SDK = "sdk"
    HARDWARE_ID = "hardware_id"
    IS_HARDWARE_ID_REAL = "is_hardware_id_real"
    ADVERTISING_IDS = "advertising_ids"
    AAID = "aaid"
    LAT_VAL = "lat_val"
    RETRY_NUMBER = "retryNumber"
    ERROR_MESSAGE = "error_message"


class LinkParam:
    """长链接查询参数名（也用于短链接请求体）"""

    TAGS = "tags"
    ALIAS = "alias"
    CHANNEL = "channel"
    FEATURE = "feature"
    STAGE = "stage"
    CAMPAIGN = "campaign"
    TYPE = "type"
    DURATION = "duration"
    DATA = "data"
    SOURCE = "source"


class PrefKey:
    """偏好存储键名（与磁盘上已有的状态文件保持兼容）"""

    BRANCH_KEY = "bnc_branch_key"
    IDENTITY_ID = "bnc_identity_id"
    DEVICE_FINGERPRINT_ID = "bnc_device_fingerprint_id"
    SESSION_ID = "bnc_session_id"
    LINK_CLICK_ID = "bnc_link_click_id"
    USER_URL = "bnc_user_url"
    INSTALL_PARAMS = "bnc_install_params"
    SESSION_PARAMS = "bnc_session_params"
    APP_VERSION = "bnc_app_version"
    REFERRER_CLICK_TS = "bnc_referrer_click_ts"
    INSTALL_BEGIN_TS = "bnc_install_begin_ts"
    INSTALL_REFERRER_CLICK_ID = "bnc_install_referrer_click_id"
    TRACKING_DISABLED = "bnc_tracking_state"
    REQUEST_QUEUE = "bnc_server_request_queue"


# 磁盘格式中表示“未设置”的哨兵值，与空字符串不同
NO_STRING_VALUE = "bnc_no_value"

# 默认长链接前缀，后接 branch key
DEF_BASE_URL = "https://bnc.lt/a/"

# 长链接 source 参数的固定平台标识
LONG_URL_SOURCE = "python"

SDK_NAME = "python"

DEFAULT_API_BASE_URL = "https://api2.branch.io"
