import json
from types import SimpleNamespace

from app.extensions import db
from app.models import Bookmark, Category, EnhancementJob, SubCategory
from app.services.enhancement import (
    apply_metadata,
    cover_image_for,
    enhance_bookmark,
    favicon_url,
    load_presets,
    smart_description,
)
from app.services.metadata import PageMeta


def _target(url, description=None, title=None):
    return SimpleNamespace(url=url, description=description, title=title or url)


def _seed_bookmarks(*urls, description=None):
    category = Category(id="cat_t", name="Test")
    category.sub_categories.append(SubCategory(id="sub_t", name="Inbox"))
    db.session.add(category)
    for index, url in enumerate(urls):
        db.session.add(
            Bookmark(
                id=f"bm_{index}",
                sub_category_id="sub_t",
                url=url,
                title=url,
                description=description,
                tags=[],
            )
        )
    db.session.commit()


def test_smart_description_uses_path_then_domain_rules():
    assert smart_description("https://example.com/docs/intro") == (
        "Example - Documentation and developer guides"
    )
    assert smart_description("https://www.acme.io/blog/post") == (
        "Acme - Blog posts and technical insights"
    )
    assert smart_description("https://user.github.io/") == (
        "Project homepage and documentation"
    )
    assert smart_description("https://pypi.org/project/flask") == (
        "Software packages and libraries"
    )
    assert smart_description("https://superuser.stackexchange.com/q/1") == (
        "Programming Q&A and discussions"
    )
    assert smart_description("https://example.com/") == "Example - Website link"


def test_favicon_and_cover_images():
    assert favicon_url("https://www.python.org/about") == (
        "https://icons.duckduckgo.com/ip3/www.python.org.ico"
    )
    assert cover_image_for("https://www.youtube.com/watch?v=abc123&t=5") == (
        "https://img.youtube.com/vi/abc123/maxresdefault.jpg"
    )
    assert "github-social.png" in cover_image_for("https://github.com/pallets/flask")
    assert cover_image_for("https://example.com/a b") == (
        "/api/screenshot?url=https%3A%2F%2Fexample.com%2Fa%20b"
    )


def test_enhance_skips_bookmarks_with_detailed_description():
    bookmark = _target("https://example.com", description="A" * 20)

    assert enhance_bookmark(bookmark) is None


def test_enhance_prefers_preset_entries(tmp_path):
    preset_file = tmp_path / "presets.json"
    preset_file.write_text(
        json.dumps(
            {
                "www.notion.so": {
                    "title": "Notion",
                    "description": "All-in-one workspace",
                    "coverImage": "https://notion.so/cover.png",
                }
            }
        ),
        encoding="utf-8",
    )
    presets = load_presets(str(preset_file))

    metadata = enhance_bookmark(_target("https://notion.so/product"), presets=presets)

    assert metadata.source == "preset"
    assert metadata.description == "All-in-one workspace"
    assert metadata.cover_image == "https://notion.so/cover.png"
    assert metadata.favicon == "https://icons.duckduckgo.com/ip3/notion.so.ico"


def test_enhance_uses_remote_description_when_longer(monkeypatch):
    monkeypatch.setattr(
        "app.services.enhancement.fetch_meta",
        lambda url, **_kwargs: PageMeta(
            title="Remote title",
            description="A considerably longer description fetched from the page",
            url=url,
        ),
    )

    metadata = enhance_bookmark(_target("https://blog.example.org"), fetch_remote=True)

    assert metadata.source == "remote"
    assert metadata.title == "Remote title"


def test_enhance_skips_remote_fetch_for_well_known_sites(monkeypatch):
    def _fail(*_args, **_kwargs):
        raise AssertionError("well-known sites are not fetched")

    monkeypatch.setattr("app.services.enhancement.fetch_meta", _fail)

    metadata = enhance_bookmark(
        _target("https://www.youtube.com/watch?v=xyz"), fetch_remote=True
    )

    assert metadata.source == "smart"
    assert metadata.description == "Youtube - Website link"


def test_apply_metadata_keeps_user_title():
    bookmark = SimpleNamespace(
        url="https://example.com",
        title="My title",
        description=None,
        favicon=None,
        cover_image=None,
        enhanced=False,
        enhanced_at=None,
    )
    metadata = enhance_bookmark(bookmark)
    metadata.title = "Fetched title"

    apply_metadata(bookmark, metadata)

    assert bookmark.title == "My title"
    assert bookmark.description == "Example - Website link"
    assert bookmark.enhanced is True
    assert bookmark.enhanced_at is not None


def test_enhancement_job_enhances_and_skips(app):
    with app.app_context():
        _seed_bookmarks("https://example.com/docs", "https://other.example/")
        detailed = db.session.get(Bookmark, "bm_1")
        detailed.description = "An already detailed description"
        job = EnhancementJob(status="pending")
        db.session.add(job)
        db.session.commit()
        job_id = job.id

    from app.services.enhancement_jobs import (
        _run_enhancement_job,
        get_enhancement_job_details,
    )

    _run_enhancement_job(app, job_id)

    with app.app_context():
        job = db.session.get(EnhancementJob, job_id)
        assert job.status == "done"
        assert job.total_targets == 1
        assert job.total_enhanced == 1
        assert job.total_skipped == 1
        assert job.progress == 100

        bookmark = db.session.get(Bookmark, "bm_0")
        assert bookmark.enhanced is True
        assert bookmark.description == "Example - Documentation and developer guides"

        details = get_enhancement_job_details(job)
        assert details["can_stop"] is False
        assert details["status_message"] == "Enhancement complete."


def test_enhancement_job_routes(client, app, monkeypatch):
    started = {}

    def _fake_start(*, app, job_id, bookmark_ids):
        started["job_id"] = job_id

    monkeypatch.setattr("app.library.routes.start_enhancement_job", _fake_start)

    response = client.post("/api/v1/enhancement/jobs", json={})
    assert response.status_code == 202
    job_id = response.get_json()["job"]["id"]
    assert started["job_id"] == job_id

    response = client.post("/api/v1/enhancement/jobs", json={})
    assert response.status_code == 409
    assert response.get_json()["error"] == "Enhancement already in progress"

    response = client.get(f"/api/v1/enhancement/jobs/{job_id}")
    assert response.get_json()["status"] == "pending"

    response = client.post(f"/api/v1/enhancement/jobs/{job_id}/stop")
    assert response.status_code == 202
    assert response.get_json()["stop_requested"] is True

    from app.services.enhancement_jobs import _run_enhancement_job

    _run_enhancement_job(app, job_id)

    with app.app_context():
        assert db.session.get(EnhancementJob, job_id).status == "stopped"

    assert client.get("/api/v1/enhancement/jobs/999").status_code == 404


def test_single_bookmark_enhance_route(client, app):
    with app.app_context():
        _seed_bookmarks("https://tools.example/tool/convert")

    response = client.post("/api/v1/bookmarks/bm_0/enhance")

    payload = response.get_json()
    assert payload["enhanced"] is True
    assert payload["bookmark"]["description"] == (
        "Tools - Online tools and utilities"
    )
    assert payload["bookmark"]["favicon"] == (
        "https://icons.duckduckgo.com/ip3/tools.example.ico"
    )


def test_enhancement_sweep_marks_bookmarks(app):
    with app.app_context():
        _seed_bookmarks("https://a.example/", "https://b.example/guide")

    from app.jobs.scheduler import run_enhancement_sweep

    assert run_enhancement_sweep(app) == 2

    with app.app_context():
        assert Bookmark.query.filter_by(enhanced=False).count() == 0


def test_presets_pick_up_a_file_created_later(tmp_path):
    preset_file = tmp_path / "presets.json"

    assert load_presets(str(preset_file)) == {}

    preset_file.write_text(
        json.dumps({"notion.so": {"description": "All-in-one workspace"}}),
        encoding="utf-8",
    )

    assert load_presets(str(preset_file)) == {
        "notion.so": {"description": "All-in-one workspace"}
    }


def test_malformed_preset_file_is_ignored(client, app, tmp_path):
    preset_file = tmp_path / "presets.json"
    preset_file.write_text("{not json", encoding="utf-8")
    app.config["PRESET_DESCRIPTIONS_PATH"] = str(preset_file)
    with app.app_context():
        _seed_bookmarks("https://example.com/docs")

    response = client.post("/api/v1/bookmarks/bm_0/enhance")

    assert response.status_code == 200
    assert response.get_json()["source"] == "smart"


def test_finished_job_runtime_is_capped(app, monkeypatch):
    from app.services import enhancement_jobs

    monkeypatch.setattr(enhancement_jobs, "RUNTIME_HISTORY_LIMIT", 1)
    with app.app_context():
        jobs = [EnhancementJob(status="pending"), EnhancementJob(status="pending")]
        db.session.add_all(jobs)
        db.session.commit()
        first_id, second_id = [job.id for job in jobs]

    enhancement_jobs._run_enhancement_job(app, first_id)
    assert first_id in enhancement_jobs._RUNTIME_STATE

    enhancement_jobs._run_enhancement_job(app, second_id)

    assert first_id not in enhancement_jobs._RUNTIME_STATE
    assert second_id in enhancement_jobs._RUNTIME_STATE
    with app.app_context():
        first = db.session.get(EnhancementJob, first_id)
        assert first.status == "done"
        assert enhancement_jobs.get_enhancement_job_details(first)["status_message"] is None
