from .instance import ProxyInstance, RequestHook, ResponseHook
from .registry import ProxyRegistry
from .transport import ReverseProxy, default_error_handler

__all__ = [
    "ProxyInstance",
    "RequestHook",
    "ResponseHook",
    "ProxyRegistry",
    "ReverseProxy",
    "default_error_handler",
]
