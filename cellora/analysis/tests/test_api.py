"""Tests for the HTTP layer: upload, JSON body, schema and health endpoints."""

from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

from cellora.analysis.pipeline import AnalysisPipeline
from cellora.analysis.tests.conftest import FakeInferenceClient, make_pdf, make_png, page_payload
from cellora.config import Settings, get_settings
from cellora.main import create_app


def _app(client: FakeInferenceClient | None = None, **settings_overrides):
    settings = Settings(extraction_retry_backoff_s=0.0, **settings_overrides)
    pipeline = AnalysisPipeline(client or FakeInferenceClient(), settings=settings)
    app = create_app(pipeline=pipeline)
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture()
def api() -> TestClient:
    return TestClient(_app())


class TestUpload:
    def test_png_upload(self, api: TestClient) -> None:
        resp = api.post(
            "/api/v1/analysis/upload",
            files={"file": ("face.png", make_png(), "image/png")},
            data={"actual_age": "40"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        report = body["analysis"]
        assert report["totalPages"] == 1
        assert report["sourceFile"] == "face.png"
        assert report["ageAnalysis"]["actualAge"] == 40

    def test_pdf_upload(self) -> None:
        client = FakeInferenceClient({2: page_payload(2, "uv", raw_metrics={"uvSpots": 3})})
        api = TestClient(_app(client))
        data = make_pdf(["Standard light photograph, full face", "UV light photograph, full face"])
        resp = api.post("/api/v1/analysis/upload", files={"file": ("scan.pdf", data, "application/pdf")})
        assert resp.status_code == 200
        assert resp.json()["analysis"]["detailedMetrics"]["pigmentation"]["uvDamage"]["hidden"] == 3

    def test_invalid_format_is_400(self, api: TestClient) -> None:
        resp = api.post(
            "/api/v1/analysis/upload",
            files={"file": ("scan.pdf", b"not a pdf", "application/pdf")},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "InvalidFormat"

    def test_too_large_is_413(self) -> None:
        api = TestClient(_app(max_upload_size_bytes=16))
        resp = api.post(
            "/api/v1/analysis/upload",
            files={"file": ("face.png", make_png(), "image/png")},
        )
        assert resp.status_code == 413
        assert resp.json()["detail"]["kind"] == "TooLarge"

    def test_insufficient_data_is_422(self) -> None:
        api = TestClient(_app(FakeInferenceClient({1: "no json"})))
        resp = api.post(
            "/api/v1/analysis/upload",
            files={"file": ("face.png", make_png(), "image/png")},
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["kind"] == "InsufficientData"

    def test_age_out_of_range(self, api: TestClient) -> None:
        resp = api.post(
            "/api/v1/analysis/upload",
            files={"file": ("face.png", make_png(), "image/png")},
            data={"actual_age": "0"},
        )
        assert resp.status_code == 422


class TestJsonBody:
    def test_base64(self, api: TestClient) -> None:
        encoded = base64.b64encode(make_png()).decode()
        resp = api.post("/api/v1/analysis", json={"base64": encoded, "fileName": "face.png"})
        assert resp.status_code == 200
        assert resp.json()["analysis"]["sourceFile"] == "face.png"

    def test_file_path(self, tmp_path) -> None:
        api = TestClient(_app(local_intake_dir=str(tmp_path)))
        target = tmp_path / "face.png"
        target.write_bytes(make_png())
        resp = api.post("/api/v1/analysis", json={"filePath": "face.png", "actualAge": 33})
        assert resp.status_code == 200
        assert resp.json()["analysis"]["ageAnalysis"]["actualAge"] == 33

    def test_missing_file_path_is_400(self, tmp_path) -> None:
        api = TestClient(_app(local_intake_dir=str(tmp_path)))
        resp = api.post("/api/v1/analysis", json={"filePath": str(tmp_path / "missing.pdf")})
        assert resp.status_code == 400

    def test_file_path_outside_intake_dir_is_400(self, tmp_path) -> None:
        intake = tmp_path / "intake"
        intake.mkdir()
        secret = tmp_path / "secret.png"
        secret.write_bytes(make_png())
        api = TestClient(_app(local_intake_dir=str(intake)))

        for path in (str(secret), "../secret.png"):
            resp = api.post("/api/v1/analysis", json={"filePath": path})
            assert resp.status_code == 400
            detail = resp.json()["detail"]
            assert detail["kind"] == "InvalidFormat"
            assert "outside the intake directory" in detail["message"]

    def test_file_path_disabled_by_default(self, api: TestClient, tmp_path) -> None:
        target = tmp_path / "face.png"
        target.write_bytes(make_png())
        resp = api.post("/api/v1/analysis", json={"filePath": str(target)})
        assert resp.status_code == 400
        assert "disabled" in resp.json()["detail"]["message"]

    def test_both_sources_rejected(self, api: TestClient) -> None:
        resp = api.post(
            "/api/v1/analysis",
            json={"base64": "AAAA", "fileName": "a.png", "filePath": "/tmp/a.png"},
        )
        assert resp.status_code == 422

    def test_base64_requires_file_name(self, api: TestClient) -> None:
        resp = api.post("/api/v1/analysis", json={"base64": "AAAA"})
        assert resp.status_code == 422


class TestSchemaAndHealth:
    def test_schema(self, api: TestClient) -> None:
        resp = api.get("/api/v1/analysis/schema")
        assert resp.status_code == 200
        body = resp.json()
        assert body["schemaVersion"] == "1.0"
        assert "regionAnalysis" in body["schema"]["properties"]

    def test_health(self, api: TestClient) -> None:
        resp = api.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["pipeline"] == "ready"
        assert body["status"] in {"healthy", "degraded"}

    def test_pipeline_not_ready(self) -> None:
        api = TestClient(create_app())
        resp = api.post("/api/v1/analysis", json={"base64": "AAAA", "fileName": "a.png"})
        assert resp.status_code == 503
