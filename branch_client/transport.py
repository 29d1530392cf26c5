"""服务端传输层：基于 httpx 的异步 JSON POST。"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from .errors import ERR_BRANCH_NO_CONNECTIVITY, ERR_BRANCH_REQ_TIMED_OUT, TransportFailure

logger = logging.getLogger("branch_client")


class ServerResponse:
    """统一响应包装：状态码 + 有序 JSON 对象。"""

    def __init__(self, status_code: int, body: Optional[dict[str, Any]] = None, message: str = ""):
        self.status_code = status_code
        self.body: dict[str, Any] = body if body is not None else {}
        self.message = message

    @classmethod
    def from_raw(cls, raw: Any) -> "ServerResponse":
        status_code = int(getattr(raw, "status_code", 0))
        text = getattr(raw, "text", "")
        try:
            body = raw.json()
        except (json.JSONDecodeError, ValueError):
            body = None
        if not isinstance(body, dict):
            # 服务端偶尔返回数组或纯文本，保留原文作为错误信息
            return cls(status_code, {}, message=str(text)[:500])
        error = body.get("error")
        message = ""
        if isinstance(error, dict):
            message = str(error.get("message", ""))
        return cls(status_code, body, message=message)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def has(self, key: str) -> bool:
        return key in self.body and self.body[key] is not None

    def get(self, key: str, default: Any = None) -> Any:
        return self.body.get(key, default)

    def __repr__(self) -> str:
        return f"ServerResponse(status_code={self.status_code}, keys={list(self.body.keys())})"


def connectivity_failure(exc: Exception) -> ServerResponse:
    """把传输异常转换为带本地错误码的响应"""
    if isinstance(exc, TransportFailure) and exc.code is not None:
        return ServerResponse(exc.code, message=exc.message)
    if isinstance(exc, httpx.TimeoutException):
        return ServerResponse(ERR_BRANCH_REQ_TIMED_OUT, message=f"请求超时: {exc}")
    return ServerResponse(ERR_BRANCH_NO_CONNECTIVITY, message=f"网络错误: {exc}")


class BaseTransport:
    """统一传输层接口。"""

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ServerResponse:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class HttpxTransport(BaseTransport):
    """httpx 传输实现。"""

    def __init__(
        self,
        *,
        timeout: float,
        connect_timeout: float = 10.0,
        proxy: Optional[str] = None,
        trust_env: bool = False,
    ):
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(timeout, connect=min(connect_timeout, timeout)),
            "follow_redirects": True,
            "trust_env": trust_env,
        }
        if proxy:
            kwargs["proxy"] = proxy
        self._client = httpx.AsyncClient(**kwargs)

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ServerResponse:
        request_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)
        kwargs: dict[str, Any] = {"headers": request_headers, "json": payload}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self._client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportFailure(f"请求超时: {e}", ERR_BRANCH_REQ_TIMED_OUT) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"网络错误: {e}", ERR_BRANCH_NO_CONNECTIVITY) from e
        return ServerResponse.from_raw(response)

    async def close(self) -> None:
        await self._client.aclose()


def create_transport(
    *,
    timeout: float,
    connect_timeout: float = 10.0,
    proxy: Optional[str] = None,
    trust_env: bool = False,
) -> BaseTransport:
    """创建传输层实例。"""
    if proxy:
        logger.info("使用代理: %s", proxy)
    return HttpxTransport(
        timeout=timeout,
        connect_timeout=connect_timeout,
        proxy=proxy,
        trust_env=trust_env,
    )
