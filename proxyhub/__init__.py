from .config import ProxyConfig, load_proxy_configs, parse_proxy_configs
from .errors import (
    InstanceCreationFailed,
    InvalidConfiguration,
    MalformedTargetURL,
    ProxyError,
    ResponseHookFailed,
    UnknownProxy,
)
from .proxy import ProxyInstance, ProxyRegistry, ReverseProxy

__all__ = [
    "ProxyConfig",
    "load_proxy_configs",
    "parse_proxy_configs",
    "ProxyError",
    "InvalidConfiguration",
    "UnknownProxy",
    "InstanceCreationFailed",
    "MalformedTargetURL",
    "ResponseHookFailed",
    "ProxyInstance",
    "ProxyRegistry",
    "ReverseProxy",
]
