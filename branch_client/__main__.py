"""命令行入口

    python -m branch_client long-url --channel email --tag a --tag b
    python -m branch_client create-url --alias spring --param foo=bar
    python -m branch_client install
    python -m branch_client state
"""

import argparse
import concurrent.futures
import json
import logging
import sys
from typing import List, Optional

from .client import BranchClient
from .config import load_config
from .link_data import LinkProperties
from .version import get_startup_info


def _parse_params(items: List[str]) -> dict:
    params = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"参数格式应为 key=value: {item}")
        params[key] = value
    return params


def _link_properties(args: argparse.Namespace) -> LinkProperties:
    return LinkProperties(
        type=args.type,
        duration=args.duration,
        tags=args.tag or [],
        alias=args.alias,
        channel=args.channel,
        feature=args.feature,
        stage=args.stage,
        campaign=args.campaign,
        params=_parse_params(args.param or []),
    )


def _add_link_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tag", action="append", help="标签（可重复）")
    parser.add_argument("--alias")
    parser.add_argument("--channel")
    parser.add_argument("--feature")
    parser.add_argument("--stage")
    parser.add_argument("--campaign")
    parser.add_argument("--type", type=int, default=0)
    parser.add_argument("--duration", type=int, default=0)
    parser.add_argument("--param", action="append", help="自定义参数 key=value（可重复）")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="branch-client", description="Branch 深度链接客户端")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="command", required=True)

    long_url = sub.add_parser("long-url", help="本地生成长链接")
    _add_link_arguments(long_url)

    create_url = sub.add_parser("create-url", help="创建短链接")
    _add_link_arguments(create_url)
    create_url.add_argument("--no-fallback", action="store_true", help="失败时不返回长链接")
    create_url.add_argument("--timeout", type=float, default=None)

    install = sub.add_parser("install", help="登记安装并输出安装参数")
    install.add_argument("--timeout", type=float, default=30.0)

    sub.add_parser("state", help="输出本地持久化状态")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """主入口"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_config()
    except ValueError as e:
        print(f"[错误] {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print(get_startup_info())

    client = BranchClient(config)

    if args.command == "state":
        print(json.dumps(client.get_state(), indent=2, ensure_ascii=False))
        return 0

    if args.command == "long-url":
        try:
            props = _link_properties(args)
        except ValueError as e:
            print(f"[错误] {e}", file=sys.stderr)
            return 2
        url = client.get_long_url(props)
        if url is None:
            return 1
        print(url)
        return 0

    with client:
        if args.command == "create-url":
            try:
                props = _link_properties(args)
            except ValueError as e:
                print(f"[错误] {e}", file=sys.stderr)
                return 2
            url = client.generate_short_url(
                props, timeout=args.timeout, default_to_long_url=not args.no_fallback
            )
            if url is None:
                print("[错误] 创建链接失败", file=sys.stderr)
                return 1
            print(url)
            return 0

        try:
            request = client.register_install().result(timeout=args.timeout)
        except concurrent.futures.TimeoutError:
            print(f"[错误] 安装注册超时（{args.timeout} 秒）", file=sys.stderr)
            return 1
        if request.error is not None:
            print(f"[错误] {request.error}", file=sys.stderr)
            return 1
        print(json.dumps(client.get_first_referring_params(), indent=2, ensure_ascii=False))
        return 0


if __name__ == "__main__":
    sys.exit(main())
