"""版本信息与设备信息

会话初始化请求携带的 os / os_version / sdk 字段取自这里。
"""

import platform
import sys
from datetime import datetime

from .defines import SDK_NAME

# 从 pyproject.toml 读取的版本号
# 注意：安装后可以通过 importlib.metadata 获取
__version__ = "0.4.0"


def get_version() -> str:
    """获取版本号"""
    try:
        from importlib.metadata import version as get_pkg_version
        return get_pkg_version("branch-client")
    except Exception:
        # 未安装（源码目录直接运行）时回退到硬编码版本
        return __version__


def get_sdk_identifier() -> str:
    """sdk 字段，形如 python0.4.0"""
    return f"{SDK_NAME}{get_version()}"


def get_platform_info() -> dict:
    """获取平台信息

    - Windows: platform.system() == "Windows"
    - Linux: platform.system() == "Linux"
    - macOS: platform.system() == "Darwin"
    """
    return {
        "system": platform.system(),  # Windows, Linux, Darwin
        "system_version": platform.release(),
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "architecture": platform.machine(),  # x86_64, AMD64, ARM64, aarch64
    }


def get_device_info() -> dict:
    """会话初始化请求使用的设备字段"""
    info = get_platform_info()
    return {
        "os": info["system"] or "Unknown",
        "os_version": info["system_version"],
        "sdk": get_sdk_identifier(),
    }


def get_startup_info() -> str:
    """获取启动信息字符串，用于 CLI 输出"""
    info = get_platform_info()
    lines = [
        "=" * 60,
        f"  branch-client v{get_version()}",
        "=" * 60,
        f"  平台: {info['system']} {info['architecture']}",
        f"  Python: {info['python_version']}",
        f"  时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "=" * 60,
    ]
    return "\n".join(lines)
