"""
Single-target reverse proxy transport.

Forwards one inbound Starlette request to an absolute target URL through a
shared ``httpx.AsyncClient`` and relays the upstream response back. Callers
customise the exchange through two callbacks:

- ``director(outbound)`` mutates the outbound ``httpx.Request`` before it is sent
- ``modify_response(upstream)`` mutates the upstream ``httpx.Response`` before
  it is relayed; raising aborts the relay and hands the failure to
  ``error_handler``
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from proxyhub.proxy.headers import remove_hop_by_hop_headers
from proxyhub.utils import redact_headers
from proxyhub.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

Director = Callable[[httpx.Request], Union[None, Awaitable[None]]]
ModifyResponse = Callable[[httpx.Response], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[Request, Exception], Response]


async def maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


def default_error_handler(request: Request, error: Exception) -> Response:
    """Answer a failed exchange with a gateway error instead of the upstream response."""
    if isinstance(error, httpx.TimeoutException):
        return PlainTextResponse("Gateway timeout", status_code=504)
    return PlainTextResponse("Bad gateway", status_code=502)


def _has_body(request: Request) -> bool:
    headers = request.headers
    return "transfer-encoding" in headers or headers.get("content-length", "0") not in (
        "",
        "0",
    )


class ReverseProxy:
    def __init__(
        self,
        target: Union[str, httpx.URL],
        client: httpx.AsyncClient,
        director: Optional[Director] = None,
        modify_response: Optional[ModifyResponse] = None,
        error_handler: Optional[ErrorHandler] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.target = httpx.URL(target)
        self.client = client
        self.director = director
        self.modify_response = modify_response
        self.error_handler = error_handler or default_error_handler
        self.timeout = timeout

    def build_outbound(self, request: Request) -> httpx.Request:
        """Copy method, headers and body stream of the inbound request onto the target URL."""
        body = request.stream() if _has_body(request) else None
        timeout = self.timeout or self.client.timeout
        outbound = httpx.Request(
            request.method,
            self.target,
            headers=list(request.headers.raw),
            content=body,
            extensions={"timeout": timeout.as_dict()},
        )
        outbound.headers["host"] = self.target.netloc.decode("ascii")
        return outbound

    def _finish_outbound(self, request: Request, outbound: httpx.Request) -> None:
        """Apply the framing and forwarding headers the director must not be able to break."""
        remove_hop_by_hop_headers(outbound.headers)
        if "host" not in outbound.headers:
            outbound.headers["host"] = outbound.url.netloc.decode("ascii")
        if _has_body(request) and "content-length" not in outbound.headers:
            content_length = request.headers.get("content-length")
            if content_length:
                outbound.headers["content-length"] = content_length
            else:
                outbound.headers["transfer-encoding"] = "chunked"

        client_ip = request.client.host if request.client else None
        if client_ip:
            existing_xff = outbound.headers.get("x-forwarded-for", "")
            outbound.headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")

    async def serve(self, request: Request) -> Response:
        outbound = self.build_outbound(request)
        if self.director is not None:
            await maybe_await(self.director(outbound))
        self._finish_outbound(request, outbound)

        logger.debug(
            f"[Transport] {outbound.method} {outbound.url} headers={redact_headers(outbound.headers.multi_items())}"
        )

        try:
            upstream = await self.client.send(outbound, stream=True)
        except httpx.HTTPError as e:
            log_exception_with_details(
                logger, f"[Transport] Forwarding to {outbound.url} failed:", e
            )
            return self.error_handler(request, e)

        remove_hop_by_hop_headers(upstream.headers)
        try:
            if self.modify_response is not None:
                await maybe_await(self.modify_response(upstream))
        except Exception as e:
            await upstream.aclose()
            log_exception_with_details(
                logger, f"[Transport] Response from {outbound.url} rejected:", e
            )
            return self.error_handler(request, e)

        logger.debug(f"[Transport] {outbound.url} answered {upstream.status_code}")
        return self.relay(upstream)

    def relay(self, upstream: httpx.Response) -> Response:
        """Relay status, headers and raw body bytes of the upstream response verbatim."""
        if upstream.is_stream_consumed:
            # A response hook read the body; it is already decoded
            response = Response(content=upstream.content, status_code=upstream.status_code)
            skip = {"content-encoding", "content-length"}
        else:
            response = StreamingResponse(
                upstream.aiter_raw(),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )
            skip = set()

        raw_headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in upstream.headers.multi_items()
            if name.lower() not in skip
        ]
        if skip:
            raw_headers += [
                (name, value)
                for name, value in response.raw_headers
                if name == b"content-length"
            ]
        response.raw_headers = raw_headers
        return response
