from expense_api.core import observability
from expense_api.core.observability import IMAGE_PLACEHOLDER, _before_breadcrumb, _before_send

DATA_URL = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQ=="


def test_before_send_drops_secrets_body_and_images():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer t", "apikey": "service-key", "Accept": "application/json"},
            "data": "multipart receipt bytes",
        },
        "extra": {"messages": [{"content": [{"type": "image_url", "image_url": {"url": DATA_URL}}]}]},
        "breadcrumbs": {"values": [{"message": f"payload {DATA_URL}", "data": {"file_path": "receipts/a/b.jpg"}}]},
    }

    out = _before_send(event)

    assert out["request"]["headers"] == {"Accept": "application/json"}
    assert "data" not in out["request"]
    assert out["extra"]["messages"][0]["content"][0]["image_url"]["url"] == IMAGE_PLACEHOLDER
    crumb = out["breadcrumbs"]["values"][0]
    assert crumb["message"] == f"payload {IMAGE_PLACEHOLDER}"
    assert crumb["data"] == {"file_path": "receipts/a/b.jpg"}


def test_before_breadcrumb_leaves_plain_crumbs_alone():
    crumb = {"category": "pipeline", "message": "check_consent", "data": {"attempt": 1}}
    assert _before_breadcrumb(dict(crumb)) == crumb


def test_helpers_are_noops_without_dsn(monkeypatch):
    monkeypatch.setattr(observability.settings, "SENTRY_DSN", None)
    assert observability.init_sentry("api") is False
    observability.sentry_breadcrumb("pipeline", "check_consent")
    observability.sentry_set_tags({"user_id": "u"})
    observability.sentry_capture(RuntimeError("boom"))
