"""测试链接属性组装与命令行入口"""

import json

import pytest

from branch_client.__main__ import main
from branch_client.link_data import LinkProperties, build_link_data, link_cache_key


class TestBuildLinkData:
    """测试短链接请求体中的链接属性"""

    def test_defaults_omitted(self):
        """测试：默认的 type / duration 与空属性不写入"""
        data = build_link_data(LinkProperties())
        assert data == {"data": {}}

    def test_all_fields(self):
        """测试：非默认值按固定顺序写入"""
        props = LinkProperties(
            type=1, duration=30, tags=["a"], alias="al", channel="ch",
            feature="fe", stage="st", campaign="ca", params={"k": "v"},
        )
        data = build_link_data(props)
        assert list(data.keys()) == [
            "type", "duration", "tags", "alias", "channel", "feature", "stage", "campaign", "data",
        ]
        assert data["data"] == {"k": "v"}

    def test_empty_string_is_kept(self):
        """测试：空字符串属性与 None 区分"""
        assert build_link_data(LinkProperties(channel=""))["channel"] == ""

    def test_unserializable_params(self):
        """测试：无法序列化的参数抛出 TypeError"""
        with pytest.raises(TypeError):
            build_link_data(LinkProperties(params={"bad": object()}))

    def test_cache_key_ignores_param_insertion_order(self):
        """测试：缓存键与参数插入顺序无关"""
        first = link_cache_key(build_link_data(LinkProperties(params={"a": 1, "b": 2})))
        second = link_cache_key(build_link_data(LinkProperties(params={"b": 2, "a": 1})))
        assert first == second


class TestCli:
    """测试命令行入口"""

    @pytest.fixture(autouse=True)
    def isolated_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("BRANCH_KEY", "key_test_x")
        monkeypatch.delenv("BRANCH_API_BASE_URL", raising=False)
        monkeypatch.delenv("BRANCH_TRACKING_DISABLED", raising=False)

    def test_long_url(self, capsys):
        """测试：long-url 子命令输出长链接"""
        assert main(["long-url", "--tag", "a", "--tag", "b", "--alias", "x"]) == 0
        out = capsys.readouterr().out.strip()
        assert out == "https://bnc.lt/a/key_test_x?tags=a&tags=b&alias=x&type=0&duration=0"

    def test_bad_param(self, capsys):
        """测试：自定义参数格式错误"""
        assert main(["long-url", "--param", "novalue"]) == 2
        assert "key=value" in capsys.readouterr().err

    def test_state(self, capsys):
        """测试：state 子命令输出 JSON"""
        assert main(["state"]) == 0
        state = json.loads(capsys.readouterr().out)
        assert state["bnc_branch_key"] == "key_test_x"
