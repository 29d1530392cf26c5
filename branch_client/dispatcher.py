"""请求调度器

在后台线程的事件循环中执行请求描述符：
1. 组装请求体（失败的请求永不发送）
2. 检查禁止追踪模式与前置条件
3. 同类请求去重（例如同时只允许一个会话初始化请求在途）
4. 在线程池中解析设备身份后冻结请求体
5. 发送；可重试的请求在非终止性失败时按指数退避重试
6. 重试耗尽的可持久化请求写入待发送队列，下次启动时恢复
"""

import asyncio
import concurrent.futures
import json
import logging
import threading
from typing import Callable, List, Optional

import httpx

from .config import ClientConfig
from .defines import JsonKey, PrefKey
from .errors import (
    ERR_BRANCH_INVALID_REQUEST,
    ERR_BRANCH_NO_CONNECTIVITY,
    ERR_BRANCH_TRACKING_DISABLED,
    BranchError,
    Err,
    TransportFailure,
    is_terminal_status,
)
from .identity import IdentityResolver, IdentitySnapshot
from .prefs import PreferenceStore
from .server_request import RequestContext, ServerRequest, request_from_json
from .transport import BaseTransport, ServerResponse, connectivity_failure

logger = logging.getLogger("branch_client")


class RequestDispatcher:
    """请求调度器"""

    def __init__(
        self,
        config: ClientConfig,
        prefs: PreferenceStore,
        transport: BaseTransport,
        identity: Optional[IdentityResolver] = None,
        context_provider: Optional[Callable[[], RequestContext]] = None,
    ):
        """
        Args:
            config: 客户端配置（超时、重试次数、重试间隔）
            prefs: 偏好存储（持久化待发送队列）
            transport: 传输层
            identity: 身份解析器，None 表示不解析
            context_provider: 返回当前 RequestContext，默认由 config 生成
        """
        self.config = config
        self.prefs = prefs
        self._transport = transport
        self._identity = identity
        self._context_provider = context_provider or (lambda: RequestContext.from_config(config))
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()
        self._inflight: dict[str, concurrent.futures.Future] = {}

    # ============ 生命周期 ============

    def start(self) -> None:
        """启动后台事件循环"""
        if self._running:
            return
        self._loop = asyncio.new_event_loop()
        ready = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop, args=(ready,), daemon=True, name="branch-dispatcher"
        )
        self._thread.start()
        ready.wait()
        self._running = True
        logger.info("请求调度器已启动")

    def _run_loop(self, ready: threading.Event) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(ready.set)
        self._loop.run_forever()

    def stop(self, timeout: float = 5.0) -> None:
        """停止后台事件循环并关闭传输层"""
        if not self._running:
            return
        self._running = False
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=timeout)
        except Exception as e:
            logger.warning("关闭调度器失败: %s", e)
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._loop.close()
        self._loop = None
        if self._identity:
            self._identity.close()
        logger.info("请求调度器已停止")

    async def _shutdown(self) -> None:
        """取消在途请求（由 execute 负责回调与持久化），然后关闭传输层"""
        # 让刚提交的任务先进入 execute，取消才能被其捕获
        await asyncio.sleep(0)
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        if pending:
            logger.info("取消 %d 个在途请求", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._transport.close()

    def is_running(self) -> bool:
        return self._running

    # ============ 提交 ============

    def submit(self, request: ServerRequest) -> concurrent.futures.Future:
        """
        提交请求，立即返回 Future（结果为请求对象本身）

        同一去重键已有在途请求时，新请求被丢弃（回调被清除），
        返回在途请求的 Future。
        """
        if not self._running:
            raise RuntimeError("请求调度器未启动")

        key = request.dedup_key()
        with self._lock:
            if key is not None:
                existing = self._inflight.get(key)
                if existing is not None and not existing.done():
                    logger.info("已有在途请求 (%s)，丢弃重复的 %s", key, type(request).__name__)
                    request.clear_callbacks()
                    return existing
            future = asyncio.run_coroutine_threadsafe(self.execute(request), self._loop)
            if key is not None:
                self._inflight[key] = future
                future.add_done_callback(lambda f, k=key: self._release(k, f))
        return future

    def _release(self, key: str, future: concurrent.futures.Future) -> None:
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    # ============ 执行 ============

    async def execute(self, request: ServerRequest) -> ServerRequest:
        """完整执行一个请求（可在任意事件循环中直接 await）"""
        context = self._context_provider()

        prepared = request.prepare(context)
        if isinstance(prepared, Err):
            logger.error("%r 构造失败，不会发送: %s", request, prepared.error)
            request.reject(
                BranchError(request.fail_message, prepared.error.code or ERR_BRANCH_INVALID_REQUEST)
            )
            return request

        if context.tracking_disabled and not request.executes_without_tracking():
            logger.info("追踪已禁用，%r 不发送", request)
            request.reject(BranchError(request.fail_message, ERR_BRANCH_TRACKING_DISABLED))
            return request

        if request.validate_preconditions(context) is not None:
            logger.warning("%r 前置条件不满足，已回调错误", request)
            return request

        try:
            return await self._dispatch(request, context)
        except asyncio.CancelledError:
            self._abandon(request)
            return request

    async def _dispatch(self, request: ServerRequest, context: RequestContext) -> ServerRequest:
        if not request.frozen:
            identity = await self._identity.resolve() if self._identity else IdentitySnapshot()
            request.on_pre_execute(identity, context)
            request.freeze()

        attempt = 0
        while True:
            response = await self._send(request, attempt)
            if response.ok:
                logger.debug("%r 成功: %r", request, response)
                request.on_success(response)
                return request

            retryable = request.is_retry_eligible() and not is_terminal_status(response.status_code)
            if retryable and attempt < self.config.retry_count:
                delay = min(self.config.retry_interval * (2 ** attempt), self.config.max_retry_delay)
                logger.info(
                    "%r 失败 (%d)，%.1f 秒后重试 (第 %d/%d 次)",
                    request,
                    response.status_code,
                    delay,
                    attempt + 1,
                    self.config.retry_count,
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            request.cause = TransportFailure(response.message, response.status_code)
            if retryable and request.is_persistable():
                self._persist(request)
            logger.error("%r 失败: status=%d %s", request, response.status_code, response.message)
            request.on_failure(response.status_code, response.message)
            return request

    def _abandon(self, request: ServerRequest) -> None:
        """调度器停止时收尾未完成的请求：可重试的写入队列，并回调失败"""
        message = "Request dispatcher stopped."
        request.cause = TransportFailure(message, ERR_BRANCH_NO_CONNECTIVITY)
        if request.is_retry_eligible() and request.is_persistable():
            self._persist(request)
        logger.warning("调度器已停止，%r 未完成", request)
        request.on_failure(ERR_BRANCH_NO_CONNECTIVITY, message)

    async def _send(self, request: ServerRequest, attempt: int) -> ServerResponse:
        body = dict(request.payload)
        if attempt > 0:
            body[JsonKey.RETRY_NUMBER] = attempt
        request.retry_number = attempt
        url = f"{self.config.api_base_url.rstrip('/')}/{request.endpoint}"
        logger.debug("POST %s keys=%s", url, list(body.keys()))
        try:
            return await self._transport.post_json(url, body, timeout=self.config.timeout)
        except (TransportFailure, httpx.HTTPError, OSError) as e:
            logger.warning("请求 %s 网络错误: %s", url, e)
            return connectivity_failure(e)

    # ============ 持久化队列 ============

    def _load_queue(self) -> list:
        raw = self.prefs.get_string(PrefKey.REQUEST_QUEUE)
        if not raw:
            return []
        try:
            queue = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("待发送队列损坏，已丢弃")
            return []
        return queue if isinstance(queue, list) else []

    def _persist(self, request: ServerRequest) -> None:
        with self._lock:
            queue = [item for item in self._load_queue() if item.get("kind") != request.kind.value]
            queue.append(request.to_json())
            self.prefs.set_string(PrefKey.REQUEST_QUEUE, json.dumps(queue, ensure_ascii=False))
        logger.info("%r 已写入待发送队列", request)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._load_queue())

    def restore_pending(self) -> List[concurrent.futures.Future]:
        """重新提交上次未完成的请求（无回调）"""
        with self._lock:
            queue = self._load_queue()
            self.prefs.set_string(PrefKey.REQUEST_QUEUE, None)
        futures = []
        for item in queue:
            if not isinstance(item, dict):
                continue
            request = request_from_json(self.prefs, item)
            if request is None:
                continue
            logger.info("恢复待发送请求: %r", request)
            futures.append(self.submit(request))
        return futures
