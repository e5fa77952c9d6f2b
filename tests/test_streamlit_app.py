import io
from types import SimpleNamespace

import pytest
import requests

from convertly import streamlit_app


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b"", headers=None):
        self.status_code = status_code
        self._body = body
        self.content = content
        self.text = content.decode("utf-8", errors="replace") if content else str(body)
        self.headers = headers or {}

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


@pytest.fixture(autouse=True)
def fake_streamlit(monkeypatch):
    st = SimpleNamespace(session_state={})
    monkeypatch.setattr(streamlit_app, "st", st)
    monkeypatch.setattr(streamlit_app.time, "sleep", lambda s: None)
    return st


def test_start_conversion_posts_json(monkeypatch):
    seen = {}

    def fake_post(url, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return FakeResponse(200, {"job_id": "j1", "status": "done"})

    monkeypatch.setattr(streamlit_app.requests, "post", fake_post)
    body = streamlit_app.start_conversion("markdown", "html", text="# Hi")
    assert body == {"job_id": "j1", "status": "done"}
    assert seen["url"].endswith("/api/convert")
    assert seen["json"] == {"from": "markdown", "to": "html", "content": "# Hi"}


def test_start_conversion_sends_upload(monkeypatch):
    seen = {}

    def fake_post(url, **kwargs):
        seen.update(kwargs)
        return FakeResponse(200, {"job_id": "j2", "status": "done"})

    upload = io.BytesIO(b"Title\n=====\n")
    upload.name = "notes.rst"
    upload.type = "text/x-rst"
    monkeypatch.setattr(streamlit_app.requests, "post", fake_post)
    streamlit_app.start_conversion("rst", "html", upload=upload)
    assert seen["files"]["file"] == ("notes.rst", b"Title\n=====\n", "text/x-rst")
    assert seen["data"] == {"from": "rst", "to": "html"}


def test_start_conversion_upload_leaves_source_format_to_server(monkeypatch):
    seen = {}

    def fake_post(url, **kwargs):
        seen.update(kwargs)
        return FakeResponse(200, {"job_id": "j3", "status": "done"})

    upload = io.BytesIO(b"Title\n=====\n")
    upload.name = "notes.rst"
    upload.type = ""
    monkeypatch.setattr(streamlit_app.requests, "post", fake_post)
    streamlit_app.start_conversion(None, "html", upload=upload)
    assert seen["files"]["file"] == ("notes.rst", b"Title\n=====\n", "application/octet-stream")
    assert seen["data"] == {"to": "html"}


def test_start_conversion_flattens_validation_errors(monkeypatch):
    body = {"detail": {"code": "bad_request", "message": "unsupported target format: csv"}}
    monkeypatch.setattr(streamlit_app.requests, "post", lambda url, **kw: FakeResponse(400, body))
    result = streamlit_app.start_conversion("markdown", "csv", text="x")
    assert result == {"error": "400 unsupported target format: csv"}


def test_start_conversion_connection_error(monkeypatch, fake_streamlit):
    def boom(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(streamlit_app.requests, "post", boom)
    assert streamlit_app.start_conversion("markdown", "html", text="x") is None
    assert "Failed to connect" in fake_streamlit.session_state["error"]


def test_fetch_formats_falls_back_when_api_is_down(monkeypatch):
    calls = []

    def boom(url, **kwargs):
        calls.append(url)
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(streamlit_app.requests, "get", boom)
    assert streamlit_app.fetch_formats() == streamlit_app.FALLBACK_FORMATS
    assert len(calls) == 5


def test_poll_status_until_done(monkeypatch):
    statuses = iter(["queued", "processing", "done"])
    monkeypatch.setattr(
        streamlit_app.requests,
        "get",
        lambda url, **kw: FakeResponse(200, {"job_id": "j1", "status": next(statuses)}),
    )
    assert streamlit_app.poll_status("j1") == "done"


def test_poll_status_reports_failure(monkeypatch, fake_streamlit):
    monkeypatch.setattr(
        streamlit_app.requests,
        "get",
        lambda url, **kw: FakeResponse(200, {"status": "failed", "error": "pandoc failed"}),
    )
    assert streamlit_app.poll_status("j1") == "failed"
    assert fake_streamlit.session_state["error"] == "pandoc failed"


def test_download_result_reads_filename(monkeypatch):
    headers = {
        "Content-Type": "text/html; charset=utf-8",
        "Content-Disposition": "attachment; filename=convertly_output_j1.html",
    }
    seen = {}

    def fake_get(url, **kwargs):
        seen["params"] = kwargs["params"]
        return FakeResponse(200, content=b"<p>hi</p>", headers=headers)

    monkeypatch.setattr(streamlit_app.requests, "get", fake_get)
    assert streamlit_app.download_result("j1") == (
        b"<p>hi</p>",
        "text/html; charset=utf-8",
        "convertly_output_j1.html",
    )
    assert seen["params"] == {"id": "j1"}


def test_download_result_not_complete(monkeypatch, fake_streamlit):
    body = {"error": "job not complete", "job_id": "j1", "status": "processing"}
    monkeypatch.setattr(streamlit_app.requests, "get", lambda url, **kw: FakeResponse(202, body))
    assert streamlit_app.download_result("j1") is None
    assert fake_streamlit.session_state["error"].startswith("Download error: 202")
