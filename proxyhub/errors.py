class ProxyError(Exception):
    """Base class for proxy configuration and exchange failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidConfiguration(ProxyError):
    """Raised when a proxy configuration cannot be turned into an instance."""

    def __init__(self, message: str = "invalid proxy host"):
        super().__init__(message)


class UnknownProxy(ProxyError):
    """Raised when no configuration is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown proxy named {name}")


class InstanceCreationFailed(ProxyError):
    """Raised when building the instance for a configured name fails."""

    def __init__(self, name: str, error: Exception):
        self.name = name
        self.error = error
        super().__init__(f"can not make proxy[{name}] with error: {error}")


class MalformedTargetURL(ProxyError):
    def __init__(self, target: str):
        self.target = target
        super().__init__(f"cannot parse target url: {target!r}")


class ResponseHookFailed(ProxyError):
    """Raised when a response hook aborts the response pipeline."""

    def __init__(self, hook: str, error: Exception):
        self.hook = hook
        self.error = error
        super().__init__(f"response hook {hook} failed: {error}")
