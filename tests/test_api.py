from __future__ import annotations

from fastapi.testclient import TestClient

from reviewgate.config import AppConfig
from reviewgate.main import build_app

DIFF = "\n".join(
    [
        "diff --git a/app.py b/app.py",
        "--- a/app.py",
        "+++ b/app.py",
        "@@ -1,2 +1,3 @@",
        " import os",
        '+API_KEY = "sk-live-abcdef123456"',
        " print(os.name)",
    ]
)


def _client() -> TestClient:
    return TestClient(build_app(config=AppConfig()))


def test_health() -> None:
    with _client() as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_review_returns_json_report() -> None:
    with _client() as client:
        resp = client.post("/review", json={"diff": DIFF})
    assert resp.status_code == 200
    data = resp.json()
    assert data["verdict"] == "block"
    assert data["findings"][0]["file_path"] == "app.py"


def test_review_text_format() -> None:
    with _client() as client:
        resp = client.post("/review", json={"diff": DIFF, "format": "text"})
    assert resp.status_code == 200
    assert resp.json()["verdict"] == "block"
    assert resp.json()["report"].startswith("Review verdict: BLOCK")


def test_review_rejects_malformed_diff() -> None:
    with _client() as client:
        resp = client.post("/review", json={"diff": "@@ -1,1 +1,1 @@\n-a\n+b"})
    assert resp.status_code == 400


def test_review_rejects_unknown_analyzer() -> None:
    with _client() as client:
        resp = client.post("/review", json={"diff": DIFF, "analyzers": "nope"})
    assert resp.status_code == 400


def test_review_validates_request_body() -> None:
    with _client() as client:
        resp = client.post("/review", json={"diff": DIFF, "format": "xml"})
    assert resp.status_code == 422
