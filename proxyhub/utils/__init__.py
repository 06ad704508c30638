from typing import Dict, Iterable, Optional, Tuple, Union

from proxyhub.vars import SENSITIVE_HEADERS

HeaderItems = Union[Dict[str, str], Iterable[Tuple[str, str]]]


def mask_value(value: str) -> str:
    return f"{value[:4]}****" if value else value


def redact_headers(
    headers: HeaderItems, sensitive: Optional[Iterable[str]] = None
) -> Dict[str, str]:
    """Return a loggable copy of ``headers`` with sensitive values masked."""
    sensitive = {h.lower() for h in (SENSITIVE_HEADERS if sensitive is None else sensitive)}
    items = headers.items() if hasattr(headers, "items") else headers
    redacted = {}
    for name, value in items:
        redacted[name] = mask_value(value) if name.lower() in sensitive else value
    return redacted
