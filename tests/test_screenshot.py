from types import SimpleNamespace


def test_screenshot_requires_url(client):
    response = client.get("/api/screenshot")
    assert response.status_code == 400
    assert response.get_json()["error"] == "URL parameter is required"

    response = client.get("/api/screenshot?url=nonsense")
    assert response.status_code == 400


def test_screenshot_placeholder_without_service(client):
    response = client.get("/api/screenshot?url=https://www.example.com/page")

    assert response.status_code == 200
    assert response.headers["Content-Type"].startswith("image/svg+xml")
    assert response.headers["Cache-Control"] == "public, max-age=300"
    body = response.get_data(as_text=True)
    assert "www.example.com" in body
    assert ">E</text>" in body


def test_screenshot_placeholder_escapes_hostname(client):
    response = client.get("/api/screenshot?url=https://a<b>.example/")

    body = response.get_data(as_text=True)
    assert "a&lt;b&gt;.example" in body
    assert "a<b>.example" not in body


def test_screenshot_returns_service_image(client, app, monkeypatch):
    app.config["SCREENSHOT_SERVICE_URL"] = "https://shots.example/render?u={url}"
    requested = {}

    def _fake_request(service_url, timeout):
        requested["url"] = service_url
        return SimpleNamespace(
            is_success=True,
            status_code=200,
            headers={"content-type": "image/png"},
            content=b"PNGDATA",
        )

    monkeypatch.setattr("app.services.screenshot._request_service", _fake_request)

    response = client.get("/api/screenshot?url=https://example.com/a?b=1")

    assert response.status_code == 200
    assert response.data == b"PNGDATA"
    assert response.headers["Cache-Control"] == "public, max-age=3600"
    assert requested["url"] == (
        "https://shots.example/render?u=https%3A%2F%2Fexample.com%2Fa%3Fb%3D1"
    )


def test_screenshot_falls_back_when_service_returns_html(client, app, monkeypatch):
    app.config["SCREENSHOT_SERVICE_URL"] = "https://shots.example/render?u={url}"
    monkeypatch.setattr(
        "app.services.screenshot._request_service",
        lambda *_args, **_kwargs: SimpleNamespace(
            is_success=True,
            status_code=200,
            headers={"content-type": "text/html"},
            content=b"<html></html>",
        ),
    )

    response = client.get("/api/screenshot?url=https://example.com")

    assert response.headers["Content-Type"].startswith("image/svg+xml")
    assert response.headers["Cache-Control"] == "public, max-age=300"
