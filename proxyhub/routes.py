import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from opentelemetry import trace

from proxyhub.errors import InstanceCreationFailed, UnknownProxy
from proxyhub.proxy import ProxyRegistry
from proxyhub.proxy.instance import raw_request_uri
from proxyhub.utils.traced_requests import traced_exchange
from proxyhub.vars import PROXY_BASE_PATH

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)

if PROXY_BASE_PATH:
    router.prefix = PROXY_BASE_PATH
    logger.info(f"Using PROXY_BASE_PATH: {PROXY_BASE_PATH}")
else:
    logger.info("No PROXY_BASE_PATH set, using root path")


def get_registry(request: Request) -> ProxyRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=503, detail="Proxy registry is not initialized."
        )
    return registry


def _strip_prefix(path: str, prefix: str) -> str:
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        return path[len(prefix) :]
    return path


def _forwarded_uri(request: Request) -> str:
    """
    The raw request-target below the proxy name, e.g. '/users?id=1' for
    '/{name}/users?id=1'. Percent-escapes are kept as received, so an
    encoded '?', '#' or '/' stays part of the path.
    """
    path, sep, query = raw_request_uri(request).partition("?")
    path = _strip_prefix(path, request.scope.get("root_path", ""))
    path = _strip_prefix(path, router.prefix)
    _, slash, rest = path.lstrip("/").partition("/")
    path = f"/{rest}" if slash else "/"
    return f"{path}?{query}" if sep else path


@router.get("/_proxies")
async def list_proxies(registry: ProxyRegistry = Depends(get_registry)):
    return {"proxies": registry.names()}


PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@router.api_route("/{proxy_name}{path:path}", methods=PROXY_METHODS)
async def proxy_exchange(
    proxy_name: str,
    request: Request,
    registry: ProxyRegistry = Depends(get_registry),
) -> Response:
    """Forward the request to the upstream configured under ``proxy_name``."""
    request_uri = _forwarded_uri(request)
    with traced_exchange(
        tracer,
        operation="proxy_exchange",
        proxy_name=proxy_name,
        method=request.method,
        start_message=f"[Proxy] {request.method} {proxy_name}{request_uri}",
    ) as span:
        try:
            instance = registry.make(proxy_name)
        except UnknownProxy as e:
            logger.warning(f"[Proxy] {e.message}")
            span.set_attribute("proxy.error", "unknown_proxy")
            raise HTTPException(status_code=404, detail=e.message)
        except InstanceCreationFailed as e:
            logger.error(f"[Proxy] {e.message}")
            span.set_attribute("proxy.error", "instance_creation_failed")
            raise HTTPException(status_code=500, detail=e.message)

        span.set_attribute("proxy.target_url", instance.resolve(request_uri))
        response = await instance.serve(request, request_uri=request_uri)
        span.set_attribute("proxy.status_code", response.status_code)
        return response
