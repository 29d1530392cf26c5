"""测试短链接创建请求"""

import asyncio

import httpx
import pytest

from branch_client.create_url import ServerRequestCreateUrl
from branch_client.defines import JsonKey, PrefKey
from branch_client.dispatcher import RequestDispatcher
from branch_client.errors import (
    ERR_BRANCH_DUPLICATE_URL,
    ERR_BRANCH_INVALID_REQUEST,
    ERR_BRANCH_NO_CONNECTIVITY,
    ERR_NO_INTERNET_PERMISSION,
    ConstructionError,
    DuplicateResourceError,
    Err,
    MissingPermissionError,
    RequestOutcome,
    TransportFailure,
)
from branch_client.link_data import LinkProperties
from branch_client.server_request import RequestContext
from branch_client.transport import ServerResponse

from conftest import FakeTransport

PROPS = LinkProperties(tags=["a", "b"], alias="x")
LONG_URL = "https://bnc.lt/a/key_test_x?tags=a&tags=b&alias=x&type=0&duration=0"


def _seed_identity(prefs):
    prefs.set_string(PrefKey.IDENTITY_ID, "i1")
    prefs.set_string(PrefKey.DEVICE_FINGERPRINT_ID, "d1")
    prefs.set_string(PrefKey.SESSION_ID, "s1")


class TestCreateUrlSuccess:
    """测试短链接创建成功"""

    def test_short_url_delivered(self, prefs, dispatcher, transport, recorder):
        """测试：服务端返回 url 时回调短链接"""
        transport.responses.append(ServerResponse(200, {"url": "https://bnc.lt/abc"}))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.calls == [("https://bnc.lt/abc", None)]
        assert request.outcome == RequestOutcome.SUCCEEDED
        url, payload = transport.calls[0]
        assert url == "https://api2.branch.io/v1/url"
        assert payload["branch_key"] == "key_test_x"
        assert payload["tags"] == ["a", "b"]
        assert payload["alias"] == "x"

    def test_payload_carries_identity(self, prefs, dispatcher, transport, recorder):
        """测试：追踪开启时请求体携带身份字段"""
        _seed_identity(prefs)
        transport.responses.append(ServerResponse(200, {"url": "https://bnc.lt/abc"}))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        payload = transport.payloads[0]
        assert payload[JsonKey.IDENTITY_ID] == "i1"
        assert payload[JsonKey.DEVICE_FINGERPRINT_ID] == "d1"
        assert payload[JsonKey.SESSION_ID] == "s1"

    def test_missing_url_falls_back(self, prefs, dispatcher, transport, recorder):
        """测试：响应缺少 url 字段时按失败处理"""
        transport.responses.append(ServerResponse(200, {}))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.calls == [(LONG_URL, None)]
        assert request.outcome == RequestOutcome.FALLBACK_PRODUCED


class TestCreateUrlFallback:
    """测试失败时回退到长链接"""

    def test_server_error_produces_long_url(self, prefs, dispatcher, transport, recorder):
        """测试：服务端错误时回调本地长链接且不带错误"""
        transport.responses.append(ServerResponse(500, {}, message="boom"))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.calls == [(LONG_URL, None)]
        assert request.outcome == RequestOutcome.FALLBACK_PRODUCED
        assert request.fallback_error.code == 500
        assert isinstance(request.cause, TransportFailure)

    def test_never_retried(self, prefs, dispatcher, transport, recorder):
        """测试：创建链接请求失败后不重试"""
        transport.responses.extend([ServerResponse(503, {}), ServerResponse(503, {})])
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert request.is_retry_eligible() is False
        assert len(transport.calls) == 1

    def test_connectivity_error_produces_long_url(self, prefs, dispatcher, transport, recorder):
        """测试：网络异常同样回退"""
        transport.responses.append(httpx.ConnectError("unreachable"))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value == LONG_URL
        assert recorder.error is None
        assert request.fallback_error.code == ERR_BRANCH_NO_CONNECTIVITY

    def test_fallback_uses_stored_user_url(self, prefs, dispatcher, transport, recorder):
        """测试：回退链接以用户长链接为前缀"""
        prefs.set_string(PrefKey.USER_URL, "https://bnc.lt/a/key_test_x?%24identity_id=42")
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value == (
            "https://bnc.lt/a/key_test_x?%24identity_id=42&tags=a&tags=b&alias=x&type=0&duration=0"
        )

    def test_without_fallback_reports_error(self, prefs, dispatcher, transport, recorder):
        """测试：关闭回退时回调错误"""
        transport.responses.append(ServerResponse(500, {}, message="boom"))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder, default_to_long_url=False)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value is None
        assert recorder.error.code == 500
        assert "Trouble creating a URL." in recorder.error.message
        assert request.outcome == RequestOutcome.FAILED


class TestCreateUrlErrors:
    """测试不回退的错误"""

    def test_duplicate_url(self, prefs, dispatcher, transport, recorder):
        """测试：409 报告重复链接，不回退"""
        transport.responses.append(ServerResponse(409, {}))
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value is None
        assert recorder.error.code == ERR_BRANCH_DUPLICATE_URL
        assert request.outcome == RequestOutcome.DUPLICATE
        assert isinstance(request.cause, DuplicateResourceError)
        assert len(transport.calls) == 1

    def test_missing_network_permission(self, config, prefs, transport, recorder):
        """测试：没有网络权限时立即回调错误，不发送请求"""
        config.has_network_permission = False
        dispatcher = RequestDispatcher(config, prefs, transport)
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.calls[0][0] is None
        assert recorder.error.code == ERR_NO_INTERNET_PERMISSION
        assert isinstance(request.cause, MissingPermissionError)
        assert transport.calls == []

    def test_construction_failure_never_dispatched(self, prefs, dispatcher, transport, recorder):
        """测试：请求体组装失败时永不发送"""
        props = LinkProperties(params={"bad": object()})
        request = ServerRequestCreateUrl(prefs, props, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert request.construction_failed is True
        assert isinstance(request.cause, ConstructionError)
        assert recorder.error.code == ERR_BRANCH_INVALID_REQUEST
        assert request.outcome == RequestOutcome.REJECTED
        assert transport.calls == []
        # 再次组装仍然失败
        assert isinstance(request.prepare(RequestContext("key_test_x")), Err)


class TestCreateUrlTrackingDisabled:
    """测试禁止追踪模式"""

    def test_identity_fields_stripped(self, config, prefs, recorder):
        """测试：禁止追踪时仍然发送，但不携带身份字段"""
        _seed_identity(prefs)
        prefs.set_string(PrefKey.LINK_CLICK_ID, "c1")
        transport = FakeTransport([ServerResponse(200, {"url": "https://bnc.lt/abc"})])
        dispatcher = RequestDispatcher(
            config, prefs, transport,
            context_provider=lambda: RequestContext("key_test_x", tracking_disabled=True),
        )
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        payload = transport.payloads[0]
        for key in (JsonKey.IDENTITY_ID, JsonKey.DEVICE_FINGERPRINT_ID, JsonKey.SESSION_ID, JsonKey.LINK_CLICK_ID):
            assert key not in payload
        assert recorder.value == "https://bnc.lt/abc"

    def test_fallback_strips_user_url_query(self, config, prefs, recorder):
        """测试：禁止追踪时回退链接不带用户长链接的查询参数"""
        prefs.set_string(PrefKey.USER_URL, "https://x.app.link/a/key?%24identity_id=42")
        dispatcher = RequestDispatcher(
            config, prefs, FakeTransport(),
            context_provider=lambda: RequestContext("key_test_x", tracking_disabled=True),
        )
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value == "https://x.app.link/a/key?tags=a&tags=b&alias=x&type=0&duration=0"

    def test_fallback_strips_query_of_user_url_on_default_host(self, config, prefs, recorder):
        """测试：用户长链接位于默认域名下时，禁止追踪同样去掉查询参数"""
        prefs.set_string(PrefKey.USER_URL, "https://bnc.lt/a/key_test_x?%24identity_id=42")
        dispatcher = RequestDispatcher(
            config, prefs, FakeTransport(),
            context_provider=lambda: RequestContext("key_test_x", tracking_disabled=True),
        )
        request = ServerRequestCreateUrl(prefs, PROPS, callback=recorder)

        asyncio.run(dispatcher.execute(request))

        assert recorder.value == LONG_URL
        assert "identity" not in recorder.value


class TestCreateUrlAccessors:
    """测试请求属性"""

    def test_flags(self, prefs):
        """测试：同步/异步与回退标志"""
        request = ServerRequestCreateUrl(prefs, PROPS, asynchronous=False, default_to_long_url=False)
        assert request.is_async() is False
        assert request.is_default_to_long_url() is False
        assert request.executes_without_tracking() is True

    def test_cache_key_depends_on_properties(self, prefs):
        """测试：相同属性缓存键相同"""
        first = ServerRequestCreateUrl(prefs, LinkProperties(tags=["a"], params={"k": "v"}))
        second = ServerRequestCreateUrl(prefs, LinkProperties(tags=["a"], params={"k": "v"}))
        third = ServerRequestCreateUrl(prefs, LinkProperties(tags=["b"]))
        assert first.cache_key() == second.cache_key()
        assert first.cache_key() != third.cache_key()

    def test_payload_frozen_after_dispatch(self, prefs, dispatcher, transport):
        """测试：发送后请求体不可修改"""
        request = ServerRequestCreateUrl(prefs, PROPS)
        asyncio.run(dispatcher.execute(request))
        assert request.frozen is True
        with pytest.raises(RuntimeError):
            request.put("extra", 1)
