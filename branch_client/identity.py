"""设备身份解析

广告标识与安装标识由平台提供者给出，这里只负责在后台线程池中调用它们，
并保证超时或异常时返回“无值”，绝不把异常抛给调用方。
"""

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from .prefs import get_state_dir

logger = logging.getLogger("branch_client")

T = TypeVar("T")


@dataclass(frozen=True)
class AdvertisingInfo:
    """广告标识及“限制广告追踪”标志"""

    advertising_id: Optional[str]
    limit_tracking: bool = False


@dataclass(frozen=True)
class IdentitySnapshot:
    """一次解析得到的身份信息"""

    advertising_id: Optional[str] = None
    limit_tracking: bool = False
    installation_id: Optional[str] = None


AdvertisingProvider = Callable[[], Optional[AdvertisingInfo]]
InstallationIdProvider = Callable[[], Optional[str]]


def get_installation_id_path() -> Path:
    """获取 installation_id 文件路径"""
    return get_state_dir() / "installation_id"


def load_installation_id(path: Optional[Path] = None) -> str:
    """读取安装标识，文件不存在时生成并保存"""
    id_path = path or get_installation_id_path()
    if id_path.exists():
        value = id_path.read_text(encoding="utf-8").strip()
        if value:
            return value
    value = str(uuid.uuid4())
    id_path.parent.mkdir(parents=True, exist_ok=True)
    id_path.write_text(value, encoding="utf-8")
    return value


class IdentityResolver:
    """在线程池中异步解析广告标识与安装标识"""

    def __init__(
        self,
        advertising_provider: Optional[AdvertisingProvider] = None,
        installation_id_provider: Optional[InstallationIdProvider] = None,
        timeout: float = 1.5,
        max_workers: int = 2,
    ):
        """
        Args:
            advertising_provider: 返回 AdvertisingInfo 的阻塞函数，None 表示平台不支持
            installation_id_provider: 返回安装标识的阻塞函数
            timeout: 单个提供者的超时时间（秒）
            max_workers: 后台线程数
        """
        self._advertising_provider = advertising_provider
        self._installation_id_provider = installation_id_provider
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="branch-identity"
        )

    async def _call(self, name: str, fn: Optional[Callable[[], Optional[T]]]) -> Optional[T]:
        if fn is None:
            return None
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, fn), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("%s 解析超时（%.1f 秒），跳过", name, self.timeout)
        except Exception as e:
            logger.warning("%s 解析失败: %s", name, e)
        return None

    async def get_advertising_info(self) -> Optional[AdvertisingInfo]:
        info = await self._call("advertising_id", self._advertising_provider)
        if info is not None and not isinstance(info, AdvertisingInfo):
            logger.warning("advertising_id 提供者返回了未知类型: %r", type(info))
            return None
        return info

    async def get_installation_id(self) -> Optional[str]:
        value = await self._call("installation_id", self._installation_id_provider)
        return str(value) if value else None

    async def resolve(self) -> IdentitySnapshot:
        """并发解析全部身份字段"""
        ad_info, installation_id = await asyncio.gather(
            self.get_advertising_info(), self.get_installation_id()
        )
        return IdentitySnapshot(
            advertising_id=ad_info.advertising_id if ad_info else None,
            limit_tracking=ad_info.limit_tracking if ad_info else False,
            installation_id=installation_id,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
