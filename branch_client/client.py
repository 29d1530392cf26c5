"""Branch 客户端 - 对宿主应用暴露的入口

负责把配置、偏好存储、传输层、身份解析和调度器组装在一起。
所有网络操作立即返回 Future，结果通过回调或 Future 交付。
"""

import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ClientConfig, load_config
from .create_url import ServerRequestCreateUrl
from .defines import PrefKey
from .dispatcher import RequestDispatcher
from .errors import BranchError, Err, RequestOutcome
from .identity import AdvertisingProvider, IdentityResolver, load_installation_id
from .init_session import parse_params
from .link_data import LinkProperties
from .prefs import PreferenceStore, get_prefs_path
from .register_install import ServerRequestRegisterInstall
from .server_request import RequestCallback, RequestContext
from .transport import BaseTransport, create_transport

logger = logging.getLogger("branch_client")

# 禁止追踪时需要清除的身份相关状态
_IDENTITY_KEYS = (
    PrefKey.IDENTITY_ID,
    PrefKey.DEVICE_FINGERPRINT_ID,
    PrefKey.SESSION_ID,
    PrefKey.LINK_CLICK_ID,
    PrefKey.USER_URL,
    PrefKey.SESSION_PARAMS,
    PrefKey.INSTALL_PARAMS,
    PrefKey.REQUEST_QUEUE,
)


class BranchClient:
    """Branch 归因客户端"""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        prefs: Optional[PreferenceStore] = None,
        transport: Optional[BaseTransport] = None,
        identity: Optional[IdentityResolver] = None,
        advertising_provider: Optional[AdvertisingProvider] = None,
    ):
        self.config = config or load_config()
        if prefs is None:
            prefs_path = Path(self.config.prefs_path) if self.config.prefs_path else get_prefs_path()
            prefs = PreferenceStore(prefs_path)
        self.prefs = prefs
        if transport is None:
            transport = create_transport(
                timeout=self.config.timeout,
                connect_timeout=self.config.connect_timeout,
                proxy=self.config.proxy,
                trust_env=self.config.trust_env,
            )
        if identity is None:
            identity = IdentityResolver(
                advertising_provider=advertising_provider,
                installation_id_provider=load_installation_id,
                timeout=self.config.identity_timeout,
            )
        self._link_cache: Dict[str, str] = {}
        self._cache_lock = threading.Lock()
        self._check_branch_key()
        self.dispatcher = RequestDispatcher(
            self.config,
            self.prefs,
            transport,
            identity=identity,
            context_provider=self._context,
        )

    def _check_branch_key(self) -> None:
        """branch key 变化时旧状态全部作废"""
        stored_key = self.prefs.get_string(PrefKey.BRANCH_KEY)
        if stored_key is not None and stored_key != self.config.branch_key:
            logger.info("branch_key 已变化，清除本地状态")
            self.prefs.clear()
        if stored_key != self.config.branch_key:
            self.prefs.set_string(PrefKey.BRANCH_KEY, self.config.branch_key)

    def _context(self) -> RequestContext:
        return RequestContext.from_config(self.config, tracking_disabled=self.is_tracking_disabled())

    # ============ 生命周期 ============

    def start(self) -> List[concurrent.futures.Future]:
        """启动调度器，并恢复上次未完成的请求

        Returns:
            恢复的请求对应的 Future 列表
        """
        self.dispatcher.start()
        restored = self.dispatcher.restore_pending()
        if restored:
            logger.info("已恢复 %d 个待发送请求", len(restored))
        return restored

    def close(self) -> None:
        self.dispatcher.stop()

    def __enter__(self) -> "BranchClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ============ 追踪开关 ============

    def is_tracking_disabled(self) -> bool:
        return self.prefs.get_bool(PrefKey.TRACKING_DISABLED, self.config.tracking_disabled)

    def disable_tracking(self, disabled: bool) -> None:
        """切换禁止追踪模式；开启时清除全部身份相关状态"""
        self.prefs.set_bool(PrefKey.TRACKING_DISABLED, disabled)
        if disabled:
            for key in _IDENTITY_KEYS:
                self.prefs.set_string(key, None)
            with self._cache_lock:
                self._link_cache.clear()
            logger.info("已禁止追踪，身份状态已清除")

    # ============ 安装注册 ============

    def set_install_referrer(
        self,
        referrer_click_ts: int = 0,
        install_begin_ts: int = 0,
        click_id: Optional[str] = None,
    ) -> None:
        """记录平台安装来源信息，供下一次安装注册使用"""
        self.prefs.set_long(PrefKey.REFERRER_CLICK_TS, referrer_click_ts)
        self.prefs.set_long(PrefKey.INSTALL_BEGIN_TS, install_begin_ts)
        self.prefs.set_string(PrefKey.INSTALL_REFERRER_CLICK_ID, click_id)

    def register_install(self, callback: Optional[RequestCallback] = None) -> concurrent.futures.Future:
        """登记新安装，回调 (session_params, error)"""
        request = ServerRequestRegisterInstall(self.prefs, callback=callback)
        return self.dispatcher.submit(request)

    def get_first_referring_params(self) -> Dict[str, Any]:
        """安装参数（首次点击链接安装时写入，之后保持不变）"""
        return parse_params(self.prefs.get_string(PrefKey.INSTALL_PARAMS))

    def get_latest_referring_params(self) -> Dict[str, Any]:
        """最近一次会话的参数"""
        return parse_params(self.prefs.get_string(PrefKey.SESSION_PARAMS))

    # ============ 链接 ============

    def create_short_url(
        self,
        link_properties: LinkProperties,
        callback: Optional[RequestCallback] = None,
        default_to_long_url: bool = True,
        asynchronous: bool = True,
    ) -> concurrent.futures.Future:
        """
        创建短链接，回调 (url, error)

        同属性的链接已创建过时直接从缓存回调，不发起网络请求。
        """
        def on_link(url: Any, error: Optional[BranchError]) -> None:
            # 先写缓存再回调，保证 Future 完成时缓存已就绪
            if cache_key is not None and request.outcome == RequestOutcome.SUCCEEDED and url:
                with self._cache_lock:
                    self._link_cache[cache_key] = url
            if callback is not None:
                callback(url, error)

        request = ServerRequestCreateUrl(
            self.prefs,
            link_properties,
            callback=on_link,
            asynchronous=asynchronous,
            default_to_long_url=default_to_long_url,
        )
        try:
            cache_key: Optional[str] = request.cache_key()
        except (TypeError, ValueError):
            # 参数无法序列化，交给调度器按构造失败处理
            cache_key = None
        with self._cache_lock:
            cached_url = self._link_cache.get(cache_key) if cache_key is not None else None
        if cached_url is not None:
            logger.debug("命中链接缓存: %s", cached_url)
            request.on_url_available(cached_url)
            future: concurrent.futures.Future = concurrent.futures.Future()
            future.set_result(request)
            return future

        return self.dispatcher.submit(request)

    def generate_short_url(
        self,
        link_properties: LinkProperties,
        timeout: Optional[float] = None,
        default_to_long_url: bool = True,
    ) -> Optional[str]:
        """
        同步创建短链接（阻塞调用线程）

        超时后如果允许回退，返回本地长链接。
        """
        future = self.create_short_url(
            link_properties,
            default_to_long_url=default_to_long_url,
            asynchronous=False,
        )
        wait = timeout if timeout is not None else self.config.timeout * (self.config.retry_count + 1)
        try:
            request = future.result(timeout=wait)
        except concurrent.futures.TimeoutError:
            logger.warning("创建短链接超时（%.1f 秒）", wait)
            return self.get_long_url(link_properties) if default_to_long_url else None
        return request.result

    def get_long_url(self, link_properties: LinkProperties) -> Optional[str]:
        """本地生成长链接（不发起网络请求）"""
        request = ServerRequestCreateUrl(self.prefs, link_properties)
        context = self._context()
        prepared = request.prepare(context)
        if isinstance(prepared, Err):
            logger.error("长链接生成失败: %s", prepared.error)
            return None
        result = request.get_long_url()
        if isinstance(result, Err):
            return None
        return result.unwrap()

    def get_state(self) -> Dict[str, Any]:
        """当前持久化状态（调试用）"""
        return self.prefs.snapshot()
