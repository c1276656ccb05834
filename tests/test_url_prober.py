import httpx
import pytest

from app.services.refresh.prober import UrlProber, is_blank_url

pytestmark = pytest.mark.unit


def _transport(handler, calls):
    def _wrapped(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    return httpx.MockTransport(_wrapped)


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [None, "", "   ", "NULL"])
async def test_blank_urls_skip_network(url):
    calls = []
    prober = UrlProber(transport=_transport(lambda _req: httpx.Response(200), calls))
    assert await prober.probe(url) is False
    assert calls == []
    assert is_blank_url(url) is True


@pytest.mark.asyncio
async def test_probe_uses_head_and_accepts_200_only():
    calls = []
    prober = UrlProber(transport=_transport(lambda _req: httpx.Response(200), calls))
    assert await prober.probe("https://cdn.example.com/v.mp4") is True
    assert len(calls) == 1
    assert calls[0].method == "HEAD"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [204, 403, 404, 410, 500])
async def test_probe_non_200_is_invalid(status_code):
    calls = []
    prober = UrlProber(transport=_transport(lambda _req: httpx.Response(status_code), calls))
    assert await prober.probe("https://cdn.example.com/v.mp4") is False


@pytest.mark.asyncio
async def test_probe_follows_redirects():
    calls = []

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old.mp4":
            return httpx.Response(302, headers={"Location": "https://cdn.example.com/new.mp4"})
        return httpx.Response(200)

    prober = UrlProber(transport=_transport(_handler, calls))
    assert await prober.probe("https://cdn.example.com/old.mp4") is True
    assert [req.url.path for req in calls] == ["/old.mp4", "/new.mp4"]


@pytest.mark.asyncio
async def test_probe_redirect_loop_is_invalid():
    calls = []

    def _handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "https://cdn.example.com/loop.mp4"})

    prober = UrlProber(max_redirects=2, transport=_transport(_handler, calls))
    assert await prober.probe("https://cdn.example.com/loop.mp4") is False


@pytest.mark.asyncio
async def test_probe_transport_error_is_invalid():
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    prober = UrlProber(transport=httpx.MockTransport(_handler))
    assert await prober.probe("https://cdn.example.com/v.mp4") is False
