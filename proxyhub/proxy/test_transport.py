from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi import Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from proxyhub.errors import ResponseHookFailed
from proxyhub.proxy.transport import ReverseProxy, default_error_handler


class ChunkedStream(httpx.AsyncByteStream):
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self):
        self.closed = True


def _app(pxy: ReverseProxy):
    async def app(scope, receive, send):
        response = await pxy.serve(Request(scope, receive))
        await response(scope, receive, send)

    return app


class TestForwarding:
    def test_director_sees_outbound_request(self, upstream):
        seen = {}

        def director(outbound):
            seen["url"] = str(outbound.url)
            seen["host"] = outbound.headers.get("host")

        pxy = ReverseProxy("https://b.example/target", upstream.client(), director=director)

        TestClient(_app(pxy)).get("/ignored")

        assert seen == {"url": "https://b.example/target", "host": "b.example"}
        assert str(upstream.last.url) == "https://b.example/target"

    def test_callbacks_may_be_sync_or_async(self, upstream):
        director = AsyncMock()
        modify_response = Mock()
        pxy = ReverseProxy(
            "https://b.example/",
            upstream.client(),
            director=director,
            modify_response=modify_response,
        )

        res = TestClient(_app(pxy)).get("/")

        assert res.status_code == 200
        director.assert_awaited_once()
        modify_response.assert_called_once()
        assert isinstance(modify_response.call_args.args[0], httpx.Response)

    def test_host_restored_when_director_drops_it(self, upstream):
        def director(outbound):
            del outbound.headers["host"]

        pxy = ReverseProxy("http://b.example:8080/", upstream.client(), director=director)

        TestClient(_app(pxy)).get("/")

        assert upstream.last.headers["host"] == "b.example:8080"

    def test_body_framing_restored_when_director_drops_it(self, make_upstream):
        async def echo(request):
            return httpx.Response(200, content=await request.aread())

        upstream = make_upstream(echo)

        def director(outbound):
            for name in list(outbound.headers.keys()):
                del outbound.headers[name]

        pxy = ReverseProxy("https://b.example/", upstream.client(), director=director)

        res = TestClient(_app(pxy)).put("/", content=b"payload")

        assert res.content == b"payload"
        assert upstream.last.headers["content-length"] == "7"

    def test_hop_by_hop_headers_removed(self, upstream):
        pxy = ReverseProxy("https://b.example/", upstream.client())

        TestClient(_app(pxy)).get(
            "/",
            headers={
                "connection": "keep-alive, x-private",
                "x-private": "secret",
                "upgrade": "websocket",
                "x-public": "visible",
            },
        )

        headers = upstream.last.headers
        assert "upgrade" not in headers
        assert "x-private" not in headers
        assert "connection" not in headers
        assert headers["x-public"] == "visible"

    def test_x_forwarded_for_appended(self, upstream):
        pxy = ReverseProxy("https://b.example/", upstream.client())

        TestClient(_app(pxy)).get("/", headers={"x-forwarded-for": "10.0.0.1"})

        assert upstream.last.headers["x-forwarded-for"] == "10.0.0.1, testclient"

    def test_streamed_body_relayed_verbatim(self, make_upstream):
        stream = ChunkedStream([b"chunk-1,", b"chunk-2"])
        upstream = make_upstream(
            lambda request: httpx.Response(
                200,
                headers=[("set-cookie", "a=1"), ("set-cookie", "b=2")],
                stream=stream,
            )
        )
        pxy = ReverseProxy("https://b.example/", upstream.client())

        res = TestClient(_app(pxy)).get("/")

        assert res.content == b"chunk-1,chunk-2"
        assert res.headers.get_list("set-cookie") == ["a=1", "b=2"]
        assert stream.closed

    def test_body_read_by_modify_response_is_relayed(self, make_upstream):
        upstream = make_upstream(
            lambda request: httpx.Response(200, stream=ChunkedStream([b"ab", b"cd"]))
        )

        async def inspect_body(response):
            body = await response.aread()
            response.headers["x-body-length"] = str(len(body))

        pxy = ReverseProxy("https://b.example/", upstream.client(), modify_response=inspect_body)

        res = TestClient(_app(pxy)).get("/")

        assert res.content == b"abcd"
        assert res.headers["x-body-length"] == "4"
        assert res.headers["content-length"] == "4"


class TestErrors:
    def test_modify_response_failure_uses_error_handler(self, upstream):
        def reject(response):
            raise ResponseHookFailed("reject", ValueError("nope"))

        pxy = ReverseProxy("https://b.example/", upstream.client(), modify_response=reject)

        res = TestClient(_app(pxy)).get("/")

        assert res.status_code == 502
        assert res.text == "Bad gateway"

    def test_custom_error_handler(self, upstream):
        errors = []

        def reject(response):
            raise RuntimeError("nope")

        def handler(request, error):
            errors.append(error)
            return PlainTextResponse("rejected", status_code=451)

        pxy = ReverseProxy(
            "https://b.example/",
            upstream.client(),
            modify_response=reject,
            error_handler=handler,
        )

        res = TestClient(_app(pxy)).get("/")

        assert res.status_code == 451
        assert res.text == "rejected"
        assert isinstance(errors[0], RuntimeError)

    def test_connect_error_returns_502(self, make_upstream):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        pxy = ReverseProxy("https://b.example/", make_upstream(refuse).client())

        res = TestClient(_app(pxy)).get("/")

        assert res.status_code == 502

    @pytest.mark.parametrize(
        "error, status",
        [
            (httpx.ReadTimeout("slow"), 504),
            (httpx.ConnectTimeout("slow"), 504),
            (httpx.ConnectError("down"), 502),
            (ResponseHookFailed("hook", ValueError("x")), 502),
        ],
    )
    def test_default_error_handler(self, error, status):
        response = default_error_handler(None, error)
        assert response.status_code == status
