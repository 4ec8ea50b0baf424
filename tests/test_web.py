import concurrent.futures
import io
import time
from typing import Generator

import pytest
from flask.testing import FlaskClient

import speedpace_web
from speedpace_web import EngineRunner, app, build_payload, normalize_whitespace, parse_args


@pytest.fixture(name="client")
def client_fixture() -> Generator[FlaskClient, None, None]:
    """Flask test client with a fresh engine thread per test."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
    speedpace_web.shutdown_runner()


# --- Text helpers ---


def test_normalize_whitespace():
    assert normalize_whitespace("a  b \r\n\r\n\r\n\n c\t\n") == "a b\n\nc"
    assert normalize_whitespace("") == ""


def test_build_payload_uses_four_word_chunks():
    payload = build_payload("one two three four five", "book.epub")
    assert payload["ok"] is True
    assert payload["chunks"] == ["one two three four", "five"]
    assert payload["word_count"] == 5
    assert payload["char_count"] == 23


def test_parse_args_defaults(monkeypatch):
    monkeypatch.delenv("SPEEDPACE_HOST", raising=False)
    monkeypatch.delenv("SPEEDPACE_PORT", raising=False)
    args = parse_args([])
    assert args.host == "127.0.0.1"
    assert args.port == 5000
    assert args.low_refresh is False


def test_parse_args_env_overrides(monkeypatch):
    monkeypatch.setenv("SPEEDPACE_PORT", "8123")
    assert parse_args([]).port == 8123


# --- Extraction endpoint ---


def test_index_page(client):
    res = client.get("/")
    assert res.status_code == 200
    assert b"speedpace" in res.data
    assert b'value="300"' in res.data


def test_extract_requires_file(client):
    res = client.post("/api/extract", data={}, content_type="multipart/form-data")
    assert res.status_code == 400
    assert res.get_json()["ok"] is False


def test_extract_rejects_unsupported_type(client):
    data = {"file": (io.BytesIO(b"hello"), "notes.txt")}
    res = client.post("/api/extract", data=data, content_type="multipart/form-data")
    assert res.status_code == 400
    assert "Unsupported" in res.get_json()["error"]


def test_extract_returns_chunks(client, monkeypatch):
    monkeypatch.setattr(speedpace_web, "extract_text_from_file", lambda path: "alpha beta gamma delta epsilon")
    data = {"file": (io.BytesIO(b"%PDF-1.4"), "book.pdf")}
    res = client.post("/api/extract", data=data, content_type="multipart/form-data")

    assert res.status_code == 200
    body = res.get_json()
    assert body["filename"] == "book.pdf"
    assert body["chunks"] == ["alpha beta gamma delta", "epsilon"]


def test_extract_with_no_text(client, monkeypatch):
    monkeypatch.setattr(speedpace_web, "extract_text_from_file", lambda path: "  ")
    data = {"file": (io.BytesIO(b"%PDF-1.4"), "scan.pdf")}
    res = client.post("/api/extract", data=data, content_type="multipart/form-data")
    assert res.status_code == 400


def test_extract_failure_is_reported(client, monkeypatch):
    def boom(path):
        raise RuntimeError("corrupt file")

    monkeypatch.setattr(speedpace_web, "extract_text_from_file", boom)
    data = {"file": (io.BytesIO(b"junk"), "bad.epub")}
    res = client.post("/api/extract", data=data, content_type="multipart/form-data")
    assert res.status_code == 500
    assert res.get_json()["error"] == "corrupt file"


# --- Session API ---


def test_session_starts_idle(client):
    body = client.get("/api/session").get_json()
    assert body["ok"] is True
    assert body["state"] == "idle"
    assert body["intro_text"] == "Speak fast & clear"


def test_configure_rejects_empty_text(client):
    res = client.post("/api/session/configure", json={"text": "   ", "wpm": "300"})
    assert res.status_code == 400
    assert res.get_json()["ok"] is False

    res = client.post("/api/session/start", json={})
    assert res.status_code == 400
    assert client.get("/api/session").get_json()["state"] == "idle"


def test_chunk_session_lifecycle(client):
    res = client.post("/api/session/configure", json={"text": "one two three four five", "wpm": "60", "mode": "chunk"})
    assert res.status_code == 200

    body = client.post("/api/session/start", json={}).get_json()
    assert body["state"] == "running"
    assert body["chunk"] == "one two three four"
    assert body["chunk_count"] == 2

    body = client.post("/api/session/pause", json={}).get_json()
    assert body["state"] == "paused"
    assert body["chunk_index"] == 0

    body = client.post("/api/session/reset", json={}).get_json()
    assert body["state"] == "idle"
    assert body["chunk"] == ""


def test_scroll_session_needs_distance(client):
    client.post("/api/session/configure", json={"text": "a b c d e f", "wpm": 120, "mode": "scroll"})
    assert client.post("/api/session/start", json={}).status_code == 400

    res = client.post("/api/session/distance", json={"distance": "tall"})
    assert res.status_code == 400

    client.post("/api/session/distance", json={"distance": 640})
    body = client.post("/api/session/start", json={}).get_json()
    assert body["state"] == "running"
    assert body["mode"] == "scroll"
    assert body["total_distance"] == 640
    assert body["intro_visible"] is True


def test_engine_timeout_is_a_json_error(client, monkeypatch):
    def stalled(fn):
        raise concurrent.futures.TimeoutError()

    monkeypatch.setattr(speedpace_web.get_runner(), "call", stalled)
    res = client.post("/api/session/start", json={})
    assert res.status_code == 503
    body = res.get_json()
    assert body["ok"] is False
    assert "not responding" in body["error"]


# --- Engine thread ---


def test_engine_runner_plays_to_completion():
    runner = EngineRunner()
    try:
        runner.call(lambda c: c.configure("a b c d e f g h", 9999))
        runner.call(lambda c: c.start())
        deadline = time.monotonic() + 5
        while runner.snapshot()["state"] != "completed" and time.monotonic() < deadline:
            time.sleep(0.02)

        snap = runner.snapshot()
        assert snap["state"] == "completed"
        assert snap["chunk"] == "e f g h"
    finally:
        runner.shutdown()
