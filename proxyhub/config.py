import json
import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from proxyhub.errors import InvalidConfiguration

logger = logging.getLogger("uvicorn.error")

YAML_SUFFIXES = (".yaml", ".yml")


class ProxyConfig(BaseModel):
    """
    Upstream configuration for one named proxy.

    Accepts the serialized field names (``keepRequestHeaders``,
    ``keepResponseHeaders``) as well as the Python attribute names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str = ""
    timeout: int = 0
    mapping: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    keep_request_headers: Tuple[str, ...] = Field(
        default=(), alias="keepRequestHeaders"
    )
    keep_response_headers: Tuple[str, ...] = Field(
        default=(), alias="keepResponseHeaders"
    )

    @field_validator("mapping", mode="before")
    @classmethod
    def _mapping_or_empty(cls, value):
        return {} if value is None else value

    @field_validator("mapping")
    @classmethod
    def _freeze_mapping(cls, value):
        return MappingProxyType(dict(value))

    @field_validator("keep_request_headers", "keep_response_headers", mode="before")
    @classmethod
    def _headers_or_empty(cls, value):
        return () if value is None else value

    def __hash__(self):
        return hash(
            (
                self.host,
                self.timeout,
                frozenset(self.mapping.items()),
                self.keep_request_headers,
                self.keep_response_headers,
            )
        )


def parse_proxy_configs(
    data: Optional[Mapping[str, Any]], source: str = "<memory>"
) -> Dict[str, ProxyConfig]:
    """Validate a decoded ``{name: {...}}`` mapping into ProxyConfig values."""
    if not data:
        return {}
    if not isinstance(data, Mapping):
        raise InvalidConfiguration(
            f"proxy configuration in {source} must be an object keyed by proxy name"
        )

    configs: Dict[str, ProxyConfig] = {}
    for name, raw in data.items():
        if isinstance(raw, ProxyConfig):
            configs[name] = raw
            continue
        try:
            configs[name] = ProxyConfig.model_validate(raw)
        except ValidationError as e:
            raise InvalidConfiguration(
                f"invalid configuration for proxy[{name}] in {source}: {e}"
            ) from e
    return configs


def load_proxy_configs(path: Optional[str]) -> Dict[str, ProxyConfig]:
    """
    Load proxy configurations from a JSON or YAML file.

    Files ending in ``.yaml`` or ``.yml`` are read as YAML, anything else as JSON.

    Args:
        path: Path of the configuration file. An empty path yields no configurations.

    Returns:
        Mapping of proxy name to ProxyConfig
    """
    if not path:
        logger.info("[Config] No PROXY_CONFIG_FILE set, starting without proxies")
        return {}

    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(YAML_SUFFIXES):
                data = yaml.safe_load(fh)
            else:
                data = json.load(fh)
    except OSError as e:
        raise InvalidConfiguration(f"cannot read proxy configuration {path}: {e}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise InvalidConfiguration(f"cannot parse proxy configuration {path}: {e}") from e

    configs = parse_proxy_configs(data, source=path)
    logger.info(f"[Config] Loaded {len(configs)} proxy configuration(s) from {path}")
    return configs
