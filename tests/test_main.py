"""Tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import part_names
from main import app


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


class TestConvertEndpoint:
    """Tests for POST /api/convert."""

    def test_text_to_docx(self, client) -> None:
        response = client.post("/api/convert", data={"text": "# Hello\n\nWorld\n"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        )
        assert 'filename="document.docx"' in response.headers["content-disposition"]
        assert response.headers["x-conversion-warnings"] == "0"
        assert 'word/document.xml' in part_names(response.content)

    def test_file_upload(self, client) -> None:
        files = {"file": ("My Notes.md", b"# Notes\n", "text/markdown")}
        response = client.post("/convert", files=files)
        assert response.status_code == 200
        assert 'filename="My_Notes.docx"' in response.headers["content-disposition"]

    def test_missing_content(self, client) -> None:
        assert client.post("/api/convert", data={}).status_code == 400

    def test_invalid_template(self, client) -> None:
        response = client.post("/api/convert", data={"text": "# Hi", "template": "nope"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_TEMPLATE"


class TestDocxEndpoint:
    """Tests for POST /api/convert/docx."""

    def test_docx_to_markdown(self, client) -> None:
        docx = client.post("/api/convert", data={"text": "# Back\n\nAgain\n"}).content
        files = {"file": ("in.docx", docx, "application/octet-stream")}
        response = client.post("/api/convert/docx", files=files)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "# Back" in body["output"]

    def test_corrupt_docx(self, client) -> None:
        files = {"file": ("in.docx", b"not a zip", "application/octet-stream")}
        response = client.post("/api/convert/docx", files=files)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PACKAGE_STRUCTURE_ERROR"


class TestInfoEndpoints:
    def test_templates(self, client) -> None:
        data = client.get("/api/templates").json()
        assert "academic-paper" in data["templates"]
        assert "neutral" in data["mermaid_themes"]

    def test_health(self, client) -> None:
        assert client.get("/health").json()["status"] == "ok"
