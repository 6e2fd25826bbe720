import socket
from urllib.parse import urlparse

import httpx
import pytest

from app.services import image_proxy
from app.services.image_proxy import (
    BlockedHostError,
    UpstreamImage,
    favicon_fallback_url,
    is_private_hostname,
    referer_for,
)


def test_private_hostnames_are_blocked():
    for host in [
        "localhost",
        "127.0.0.1",
        "::1",
        "0.0.0.0",
        "10.1.2.3",
        "192.168.0.10",
        "172.20.0.1",
        "169.254.169.254",
        "intranet",
        "fd00::1",
        "127.1",
        "127.0.1",
        "0177.0.0.1",
        "0x7f.1",
        "::ffff:127.0.0.1",
    ]:
        assert is_private_hostname(host), host

    assert not is_private_hostname("example.com")
    assert not is_private_hostname("172.32.0.1")


def test_favicon_fallback_uses_root_domain_and_overrides():
    assert favicon_fallback_url("cdn.assets.example.com") == (
        "https://www.google.com/s2/favicons?domain=example.com&sz=256"
    )
    assert "domain=figma.com" in favicon_fallback_url("static.figma.com")


def test_referer_uses_origin_or_override():
    assert referer_for(urlparse("https://img.example.com:8443/a.png")) == (
        "https://img.example.com:8443/"
    )
    assert referer_for(urlparse("https://a.trellocdn.com/x.png")) == (
        "https://trello.com/"
    )


def test_proxy_image_validates_parameters(client):
    assert client.get("/api/proxy-image").status_code == 400

    response = client.get("/api/proxy-image?url=ftp://example.com/a.png")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Unsupported protocol"

    response = client.get("/api/proxy-image?src=not-a-url")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid URL"


def test_proxy_image_rejects_loopback_host(client, monkeypatch):
    def _should_not_fetch(*_args, **_kwargs):
        raise AssertionError("private hosts must not be fetched")

    monkeypatch.setattr("app.services.image_proxy.open_image_stream", _should_not_fetch)

    response = client.get("/api/proxy-image?url=http://127.0.0.1/secret.png")

    assert response.status_code == 403
    assert response.get_json()["error"] == "Blocked host"


def test_proxy_image_streams_primary_response(client, monkeypatch):
    seen = {}

    def _fake_open(url, headers, timeout):
        seen["url"] = url
        seen["referer"] = headers.get("Referer")
        return UpstreamImage(status_code=200, content_type="image/webp", body=[b"IMG"])

    monkeypatch.setattr("app.services.image_proxy.open_image_stream", _fake_open)

    response = client.get("/api/proxy-image?url=https://static.figma.com/logo.webp")

    assert response.status_code == 200
    assert response.data == b"IMG"
    assert response.headers["Content-Type"] == "image/webp"
    assert response.headers["Cache-Control"] == "public, max-age=86400, immutable"
    assert response.headers["X-Proxy-From"] == "static.figma.com"
    assert "X-Proxy-Fallback" not in response.headers
    assert seen["referer"] == "https://figma.com/"


def test_proxy_image_falls_back_to_s2_favicon(client, monkeypatch):
    calls = []

    def _fake_open(url, headers, timeout):
        calls.append(url)
        if len(calls) == 1:
            raise httpx.ConnectTimeout("timed out")
        return UpstreamImage(status_code=200, content_type=None, body=[b"ICON"])

    monkeypatch.setattr("app.services.image_proxy.open_image_stream", _fake_open)

    response = client.get("/api/proxy-image?url=https://cdn.example.com/broken.png")

    assert response.status_code == 200
    assert response.data == b"ICON"
    assert response.headers["Content-Type"] == "image/png"
    assert response.headers["X-Proxy-Fallback"] == "s2"
    assert calls[1] == "https://www.google.com/s2/favicons?domain=example.com&sz=256"


def test_proxy_image_returns_502_when_both_legs_fail(client, monkeypatch):
    monkeypatch.setattr(
        "app.services.image_proxy.open_image_stream",
        lambda *_args, **_kwargs: UpstreamImage(status_code=404),
    )

    response = client.get("/api/proxy-image?url=https://example.com/missing.png")

    assert response.status_code == 502
    assert response.get_json()["error"] == "Upstream error with fallback failed"


def _fake_getaddrinfo(table):
    def _resolve(host, port, *args, **kwargs):
        if host not in table:
            raise socket.gaierror(f"unknown host {host}")
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (table[host], 0))]

    return _resolve


@pytest.mark.parametrize("host", ["127.1", "0177.0.0.1", "127.0.1"])
def test_proxy_image_rejects_shorthand_loopback(client, monkeypatch, host):
    def _should_not_fetch(*_args, **_kwargs):
        raise AssertionError("private hosts must not be fetched")

    monkeypatch.setattr("app.services.image_proxy.open_image_stream", _should_not_fetch)

    response = client.get(f"/api/proxy-image?url=http://{host}:8080/x.png")

    assert response.status_code == 403
    assert response.get_json()["error"] == "Blocked host"


def test_proxy_image_rejects_out_of_range_port(client):
    response = client.get("/api/proxy-image?url=http://example.com:99999/a.png")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid URL"


def test_request_hook_rejects_names_resolving_to_loopback(monkeypatch):
    monkeypatch.setattr(
        image_proxy.socket,
        "getaddrinfo",
        _fake_getaddrinfo({"sneaky.example.com": "127.0.0.1"}),
    )

    with pytest.raises(BlockedHostError):
        image_proxy._reject_private_hosts(
            httpx.Request("GET", "https://sneaky.example.com/a.png")
        )


def test_redirect_to_private_host_falls_back_to_favicon(client, monkeypatch):
    hits = []

    def _handler(request):
        hits.append(request.url.host)
        if request.url.host == "public.example.com":
            return httpx.Response(
                302, headers={"Location": "http://127.0.0.1/secret.png"}
            )
        if request.url.host == "127.0.0.1":
            return httpx.Response(200, content=b"INTERNAL-SECRET")
        return httpx.Response(
            200, headers={"Content-Type": "image/png"}, content=b"s2"
        )

    real_client = httpx.Client
    monkeypatch.setattr(
        image_proxy.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(_handler), **kwargs),
    )
    monkeypatch.setattr(
        image_proxy.socket,
        "getaddrinfo",
        _fake_getaddrinfo(
            {"public.example.com": "93.184.216.34", "www.google.com": "142.250.72.4"}
        ),
    )

    response = client.get("/api/proxy-image?url=https://public.example.com/a.png")

    assert b"INTERNAL-SECRET" not in response.data
    assert "127.0.0.1" not in hits
    assert response.status_code == 200
    assert response.headers["X-Proxy-Fallback"] == "s2"
    assert response.data == b"s2"
