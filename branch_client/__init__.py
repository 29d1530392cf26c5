"""branch-client - Branch 深度链接与安装归因客户端"""

from .client import BranchClient
from .config import ClientConfig, load_config, save_config
from .create_url import ServerRequestCreateUrl
from .errors import BranchError, RequestOutcome
from .identity import AdvertisingInfo, IdentityResolver
from .link_data import LinkProperties
from .prefs import PreferenceStore
from .register_install import ServerRequestRegisterInstall
from .version import __version__

__all__ = [
    "AdvertisingInfo",
    "BranchClient",
    "BranchError",
    "ClientConfig",
    "IdentityResolver",
    "LinkProperties",
    "PreferenceStore",
    "RequestOutcome",
    "ServerRequestCreateUrl",
    "ServerRequestRegisterInstall",
    "__version__",
    "load_config",
    "save_config",
]
