"""测试公共夹具"""

import asyncio
import os
import sys
from typing import Any, Optional

import pytest

# 添加项目根目录到 Python 路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from branch_client.config import ClientConfig
from branch_client.dispatcher import RequestDispatcher
from branch_client.prefs import PreferenceStore
from branch_client.transport import BaseTransport, ServerResponse


class FakeTransport(BaseTransport):
    """按顺序返回预设响应的传输层，并记录每次请求"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: list = []
        self.closed = False

    async def post_json(
        self,
        url: str,
        payload: dict,
        *,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> ServerResponse:
        self.calls.append((url, dict(payload)))
        if not self.responses:
            return ServerResponse(500, {}, message="no scripted response")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    @property
    def payloads(self) -> list:
        return [payload for _, payload in self.calls]


class SlowTransport(FakeTransport):
    """每次请求前等待一段时间，用于制造在途请求"""

    def __init__(self, responses=None, delay: float = 0.3):
        super().__init__(responses)
        self.delay = delay

    async def post_json(self, url, payload, *, headers=None, timeout=None):
        await asyncio.sleep(self.delay)
        return await super().post_json(url, payload, headers=headers, timeout=timeout)


class Recorder:
    """记录回调参数"""

    def __init__(self):
        self.calls: list = []

    def __call__(self, value: Any, error) -> None:
        self.calls.append((value, error))

    @property
    def value(self):
        return self.calls[-1][0]

    @property
    def error(self):
        return self.calls[-1][1]


@pytest.fixture
def prefs():
    """内存中的偏好存储"""
    return PreferenceStore()


@pytest.fixture
def config():
    """无重试等待的测试配置"""
    return ClientConfig(
        branch_key="key_test_x",
        app_version="1.2.3",
        retry_count=2,
        retry_interval=0,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(config, prefs, transport):
    """未启动的调度器，测试中直接 asyncio.run(dispatcher.execute(...))"""
    return RequestDispatcher(config, prefs, transport)


@pytest.fixture
def recorder():
    return Recorder()
