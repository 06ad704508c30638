from typing import Iterable, MutableMapping, Sequence

# Hop-by-hop headers that should NOT be forwarded (RFC 7230, section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


def in_allow_list(allow_list: Sequence[str], name: str) -> bool:
    name = name.lower()
    return any(allowed.lower() == name for allowed in allow_list)


def filter_headers(headers: MutableMapping[str, str], allow_list: Sequence[str]) -> None:
    """
    Remove, in place, every header whose name is not in ``allow_list``.

    Matching is case-insensitive. An empty allow-list keeps every header.
    Works on ``httpx.Headers`` (all values of a repeated header are removed
    together) and on plain dicts.
    """
    if not allow_list:
        return
    for name in list(headers.keys()):
        if not in_allow_list(allow_list, name):
            del headers[name]


def connection_listed(headers: MutableMapping[str, str]) -> Iterable[str]:
    """Header names listed in the Connection header, which are hop-by-hop too."""
    value = headers.get("connection", "")
    return [token.strip().lower() for token in value.split(",") if token.strip()]


def remove_hop_by_hop_headers(headers: MutableMapping[str, str]) -> None:
    for name in list(connection_listed(headers)):
        if name in headers:
            del headers[name]
    for name in HOP_BY_HOP_HEADERS:
        if name in headers:
            del headers[name]
