import dataclasses
import logging
from typing import Awaitable, Callable, Optional, Tuple, Union

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response
from starlette.background import BackgroundTasks

from proxyhub.config import ProxyConfig
from proxyhub.errors import InvalidConfiguration, MalformedTargetURL, ResponseHookFailed
from proxyhub.proxy.headers import filter_headers
from proxyhub.proxy.transport import ReverseProxy, maybe_await
from proxyhub.vars import PROXY_TIMEOUT

logger = logging.getLogger("uvicorn.error")

RequestHook = Callable[[httpx.Request], Union[None, Awaitable[None]]]
ResponseHook = Callable[[httpx.Response], Union[None, Awaitable[None]]]

URL_SCHEMES = ("http://", "https://")


def is_absolute_url(value: str) -> bool:
    return value.startswith(URL_SCHEMES)


def raw_request_uri(request: Request) -> str:
    """The request-target as received: undecoded path plus query string."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


def parse_target(target: str) -> httpx.URL:
    try:
        url = httpx.URL(target)
    except httpx.InvalidURL as e:
        raise MalformedTargetURL(target) from e
    if not url.host:
        raise MalformedTargetURL(target)
    return url


def _hook_name(fn) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)


@dataclasses.dataclass(frozen=True)
class ProxyInstance:
    """
    A long-lived, immutable proxy bound to one ProxyConfig.

    Instances are shared by all concurrent exchanges. Adding hooks returns a
    new instance and leaves the receiver untouched, so one caller's hooks
    never leak into another holder of the same base instance.
    """

    config: ProxyConfig
    keep_request_headers: Tuple[str, ...] = ()
    keep_response_headers: Tuple[str, ...] = ()
    request_hooks: Tuple[RequestHook, ...] = ()
    response_hooks: Tuple[ResponseHook, ...] = ()
    client: Optional[httpx.AsyncClient] = dataclasses.field(
        default=None, compare=False, repr=False
    )

    @classmethod
    def build(
        cls, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None
    ) -> "ProxyInstance":
        if not is_absolute_url(config.host):
            raise InvalidConfiguration("invalid proxy host")
        return cls(
            config=config,
            keep_request_headers=tuple(config.keep_request_headers),
            keep_response_headers=tuple(config.keep_response_headers),
            client=client,
        )

    @classmethod
    def for_host(
        cls, host: str, client: Optional[httpx.AsyncClient] = None
    ) -> "ProxyInstance":
        """Proxy everything to ``host`` without validation; an empty host passes URIs through."""
        return cls(config=ProxyConfig(host=host), client=client)

    def with_request_hooks(self, *fns: RequestHook) -> "ProxyInstance":
        if not fns:
            return self
        return dataclasses.replace(self, request_hooks=self.request_hooks + fns)

    def with_response_hooks(self, *fns: ResponseHook) -> "ProxyInstance":
        if not fns:
            return self
        return dataclasses.replace(self, response_hooks=self.response_hooks + fns)

    def resolve(self, request_uri: str) -> str:
        """Map an inbound request URI to the absolute upstream URL."""
        host = self.config.host
        if host == "":
            return request_uri

        path = request_uri.lstrip("/")
        mapped = self.config.mapping.get(path)
        if mapped is not None:
            if is_absolute_url(mapped):
                return mapped
            path = mapped.lstrip("/")
        return f"{host.rstrip('/')}/{path}"

    def _timeout(self) -> Optional[httpx.Timeout]:
        if self.config.timeout > 0:
            return httpx.Timeout(self.config.timeout)
        return None

    async def direct(self, outbound: httpx.Request) -> None:
        """Pre-send step: filter request headers, then run request hooks in order."""
        filter_headers(outbound.headers, self.keep_request_headers)
        for fn in self.request_hooks:
            await maybe_await(fn(outbound))

    async def modify_response(self, upstream: httpx.Response) -> None:
        """Post-receive step: filter response headers, then run response hooks in order."""
        filter_headers(upstream.headers, self.keep_response_headers)
        for fn in self.response_hooks:
            try:
                await maybe_await(fn(upstream))
            except Exception as e:
                raise ResponseHookFailed(_hook_name(fn), e) from e

    async def serve(self, request: Request, request_uri: Optional[str] = None) -> Response:
        """
        Forward one inbound request to the resolved upstream and return the response to relay.

        Args:
            request: The inbound request
            request_uri: URI to resolve instead of the request's own raw URI

        Returns:
            The upstream response, a 404 when the target cannot be parsed, or
            the transport's error response when the exchange failed
        """
        uri = raw_request_uri(request) if request_uri is None else request_uri
        target = self.resolve(uri)
        try:
            target = parse_target(target)
        except MalformedTargetURL as e:
            logger.warning(f"[Proxy] {e.message}")
            return PlainTextResponse("parse url error", status_code=404)

        if self.client is not None:
            return await self._forward(request, target, self.client)

        client = httpx.AsyncClient(
            timeout=httpx.Timeout(PROXY_TIMEOUT), follow_redirects=False
        )
        try:
            response = await self._forward(request, target, client)
        except BaseException:
            await client.aclose()
            raise

        # The body is relayed after we return; close the client once it is done
        tasks = BackgroundTasks()
        if response.background is not None:
            tasks.add_task(response.background)
        tasks.add_task(client.aclose)
        response.background = tasks
        return response

    async def _forward(
        self, request: Request, target: httpx.URL, client: httpx.AsyncClient
    ) -> Response:
        logger.debug(f"[Proxy] {request.method} {raw_request_uri(request)} -> {target}")
        pxy = ReverseProxy(
            target,
            client,
            director=self.direct,
            modify_response=self.modify_response,
            timeout=self._timeout(),
        )
        return await pxy.serve(request)

    async def __call__(self, scope, receive, send) -> None:
        """Serve as a plain ASGI application proxying every HTTP request."""
        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await send({"type": "lifespan.shutdown.complete"})
                    return
        request = Request(scope, receive)
        response = await self.serve(request)
        await response(scope, receive, send)
