"""链接属性与短链接请求体组装。

请求体字段顺序固定，保证同一组属性生成的请求体（以及链接缓存键）一致。
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .defines import LinkParam

# 短链接请求体中链接属性的字段顺序
LINK_DATA_FIELD_ORDER = [
    LinkParam.TYPE,
    LinkParam.DURATION,
    LinkParam.TAGS,
    LinkParam.ALIAS,
    LinkParam.CHANNEL,
    LinkParam.FEATURE,
    LinkParam.STAGE,
    LinkParam.CAMPAIGN,
    LinkParam.DATA,
]


class LinkProperties(BaseModel):
    """链接属性

    除 type / duration 默认为 0 外，其余字段均可为空。
    tags 保持调用方传入的顺序。
    """

    type: int = 0
    duration: int = Field(default=0, ge=0, description="点击等待匹配新会话的时长（秒）")
    tags: List[str] = Field(default_factory=list)
    alias: Optional[str] = None
    channel: Optional[str] = None
    feature: Optional[str] = None
    stage: Optional[str] = None
    campaign: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict, description="深度链接自定义参数")


def build_link_data(props: LinkProperties) -> Dict[str, Any]:
    """
    按固定顺序组装链接属性部分的请求体。

    - type 仅在非 0 时写入
    - duration 仅在大于 0 时写入
    - 字符串属性仅在非 None 时写入

    Raises:
        TypeError: 自定义参数无法序列化为 JSON
    """
    data: Dict[str, Any] = {}
    if props.type != 0:
        data[LinkParam.TYPE] = props.type
    if props.duration > 0:
        data[LinkParam.DURATION] = props.duration
    if props.tags:
        data[LinkParam.TAGS] = list(props.tags)
    for key, value in (
        (LinkParam.ALIAS, props.alias),
        (LinkParam.CHANNEL, props.channel),
        (LinkParam.FEATURE, props.feature),
        (LinkParam.STAGE, props.stage),
        (LinkParam.CAMPAIGN, props.campaign),
    ):
        if value is not None:
            data[key] = value
    # 提前校验自定义参数可序列化，失败时由调用方标记为构造错误
    json.dumps(props.params)
    data[LinkParam.DATA] = dict(props.params)
    return data


def serialize_params(params: Dict[str, Any]) -> str:
    """自定义参数的紧凑 JSON 形式（长链接 data 参数与缓存键共用）"""
    return json.dumps(params, ensure_ascii=False, separators=(",", ":"))


def link_cache_key(link_data: Dict[str, Any]) -> str:
    """链接缓存键：序列化的链接属性（自定义参数与插入顺序无关）"""
    ordered = {}
    for field in LINK_DATA_FIELD_ORDER:
        if field in link_data:
            ordered[field] = link_data[field]
    return json.dumps(ordered, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
