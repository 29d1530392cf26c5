"""长链接生成 - 短链接创建失败时的本地回退方案

同一组链接属性、同一追踪开关下生成的长链接逐字节一致，也可以在不发起
任何网络请求的情况下用作预览。
"""

import base64
import logging
from typing import Optional
from urllib.parse import quote_plus, urlsplit

from .defines import DEF_BASE_URL, LONG_URL_SOURCE, LinkParam
from .errors import ERR_BRANCH_INVALID_REQUEST, ConstructionError, Err, Ok, Result
from .link_data import LinkProperties, serialize_params

logger = logging.getLogger("branch_client")


def default_base_url(branch_key: str) -> str:
    """默认长链接前缀（不携带任何身份查询参数）"""
    return f"{DEF_BASE_URL}{branch_key}"


def choose_base_url(user_url: Optional[str], branch_key: str) -> str:
    """优先使用服务端下发的用户长链接，否则使用默认前缀"""
    return user_url if user_url else default_base_url(branch_key)


def _strip_query(url: str) -> str:
    """去掉查询部分（追踪已禁用时，用户长链接上的身份参数不能带出去）"""
    parts = urlsplit(url)
    if not parts.query and "?" not in url:
        return url
    return url.split("?", 1)[0] + "?"


def generate_long_url(
    base_url: str,
    props: LinkProperties,
    tracking_disabled: bool,
    branch_key: Optional[str] = None,
) -> Result:
    """
    由链接属性生成长链接

    参数顺序固定：tags（每个标签一对）、alias、channel、feature、stage、
    campaign、type、duration，最后是 base64 编码的自定义参数。

    Args:
        base_url: 长链接前缀
        props: 链接属性
        tracking_disabled: 是否处于禁止追踪模式
        branch_key: 用于判断前缀是否为默认前缀；为空时任何前缀都视为用户长链接

    Returns:
        Ok(url) 或 Err(ConstructionError)，不会返回截断的链接
    """
    try:
        long_url = base_url
        if tracking_disabled and (branch_key is None or base_url != default_base_url(branch_key)):
            long_url = _strip_query(long_url)

        if "?" not in long_url:
            long_url += "?"
        if not long_url.endswith(("?", "&")):
            long_url += "&"

        pairs = []
        for tag in props.tags:
            if tag:
                pairs.append(f"{LinkParam.TAGS}={quote_plus(tag)}")
        for key, value in (
            (LinkParam.ALIAS, props.alias),
            (LinkParam.CHANNEL, props.channel),
            (LinkParam.FEATURE, props.feature),
            (LinkParam.STAGE, props.stage),
            (LinkParam.CAMPAIGN, props.campaign),
        ):
            if value:
                pairs.append(f"{key}={quote_plus(value)}")
        pairs.append(f"{LinkParam.TYPE}={int(props.type)}")
        pairs.append(f"{LinkParam.DURATION}={int(props.duration)}")
        long_url += "&".join(pairs)

        if props.params:
            raw = serialize_params(props.params).encode("utf-8")
            encoded = base64.b64encode(raw).decode("ascii")
            long_url += f"&{LinkParam.SOURCE}={LONG_URL_SOURCE}&{LinkParam.DATA}={quote_plus(encoded)}"
    except (TypeError, ValueError, UnicodeError) as e:
        logger.error("长链接生成失败: %s", e)
        return Err(ConstructionError(f"Trouble creating a URL. {e}", ERR_BRANCH_INVALID_REQUEST))

    return Ok(long_url)
