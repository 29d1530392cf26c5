"""客户端配置读取器 - 从 ~/.branch_client/config.json 与环境变量读取配置"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .defines import DEFAULT_API_BASE_URL
from .prefs import get_state_dir

logger = logging.getLogger("branch_client")


class ClientConfig(BaseModel):
    """Branch 客户端配置"""

    branch_key: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    app_version: str = ""

    # 网络设置
    timeout: float = Field(default=5.5, gt=0, description="单次请求超时（秒）")
    connect_timeout: float = Field(default=10.0, gt=0)
    proxy: Optional[str] = Field(default=None, description="http://host:port 或 socks5://host:port")
    trust_env: bool = False

    # 重试设置
    # 仅对可重试的请求类型生效（例如安装注册），创建链接请求从不重试
    retry_count: int = Field(default=3, ge=0, le=10)
    retry_interval: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=30.0, ge=0)

    # 隐私与平台能力
    tracking_disabled: bool = False
    has_network_permission: bool = True

    # 身份解析超时（秒），超时后跳过该字段继续发送
    identity_timeout: float = Field(default=1.5, gt=0)

    # 偏好存储路径，None 表示使用默认路径
    prefs_path: Optional[str] = None


def get_config_path() -> Path:
    """获取配置文件路径"""
    return get_state_dir() / "config.json"


def _apply_env_overrides(data: dict) -> dict:
    """环境变量优先于配置文件"""
    branch_key = os.environ.get("BRANCH_KEY")
    if branch_key:
        data["branch_key"] = branch_key
    base_url = os.environ.get("BRANCH_API_BASE_URL")
    if base_url:
        data["api_base_url"] = base_url
    tracking = os.environ.get("BRANCH_TRACKING_DISABLED")
    if tracking:
        data["tracking_disabled"] = tracking.strip().lower() in ("1", "true", "yes", "on")
    return data


def load_config(path: Optional[Path] = None) -> ClientConfig:
    """
    加载客户端配置

    Args:
        path: 配置文件路径，默认 ~/.branch_client/config.json

    Returns:
        ClientConfig: 配置对象（文件不存在时使用默认值）

    Raises:
        ValueError: 配置文件格式错误
    """
    config_path = path or get_config_path()
    data: dict = {}

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"配置文件格式错误: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"配置文件格式错误: {config_path}")

    # 只保留已知字段，未知字段在保存时原样保留
    known = {k: v for k, v in data.items() if k in ClientConfig.model_fields}
    config = ClientConfig.model_validate(_apply_env_overrides(known))

    if not config.branch_key:
        logger.warning("未配置 branch_key，请求将被服务端拒绝")
    elif not config.branch_key.startswith(("key_live_", "key_test_")):
        logger.warning("branch_key 格式可疑: %s...", config.branch_key[:12])

    return config


def save_config(config: ClientConfig, path: Optional[Path] = None) -> None:
    """
    保存配置到文件

    仅更新已知字段，保留文件中原有的未知字段
    """
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    existing_data: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                existing_data = json.load(f)
        except (json.JSONDecodeError, OSError):
            existing_data = {}

    existing_data.update(config.model_dump())

    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(existing_data, f, indent=2, ensure_ascii=False)
