import httpx
import pytest


class RecordingUpstream:
    """Upstream stand-in for httpx.MockTransport that records every forwarded request."""

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []
        self.handler = handler or self.default_handler

    @staticmethod
    def default_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'{"code":0,"msg":"ok"}')

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no request reached the upstream"
        return self.requests[-1]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream():
    """Upstream answering 200 {"code":0,"msg":"ok"} to everything."""
    return RecordingUpstream()


@pytest.fixture
def make_upstream():
    """Factory for upstreams with a custom handler."""
    return RecordingUpstream
