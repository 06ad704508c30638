import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import httpx

from proxyhub.config import ProxyConfig, parse_proxy_configs
from proxyhub.errors import InstanceCreationFailed, InvalidConfiguration, UnknownProxy
from proxyhub.proxy.instance import ProxyInstance

logger = logging.getLogger("uvicorn.error")


class ProxyRegistry:
    """
    Lazily builds and caches one ProxyInstance per configured proxy name.

    The configuration map is fixed at construction. The instance cache is
    written at most once per name; racing first lookups for the same name
    are serialized so that exactly one instance is built and every caller
    gets that same object.
    """

    def __init__(
        self,
        configs: Optional[Mapping[str, Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._configs: Dict[str, ProxyConfig] = parse_proxy_configs(configs)
        self._instances: Dict[str, ProxyInstance] = {}
        self._lock = threading.Lock()
        self.client = client

    def __contains__(self, name: str) -> bool:
        return name in self._configs

    def names(self) -> List[str]:
        return sorted(self._configs)

    def make(self, name: str) -> ProxyInstance:
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        config = self._configs.get(name)
        if config is None:
            raise UnknownProxy(name)

        with self._lock:
            # Another caller may have built it while we waited for the lock
            instance = self._instances.get(name)
            if instance is not None:
                return instance
            try:
                instance = ProxyInstance.build(config, client=self.client)
            except InvalidConfiguration as e:
                logger.error(f"[Registry] Cannot build proxy[{name}]: {e.message}")
                raise InstanceCreationFailed(name, e) from e
            self._instances[name] = instance

        logger.info(f"[Registry] Built proxy[{name}] -> {config.host}")
        return instance
