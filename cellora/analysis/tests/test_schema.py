"""Tests for the versioned extraction schema and response parsing."""

from __future__ import annotations

import json

import pytest

from cellora.analysis.errors import ErrorKind, SchemaViolation
from cellora.analysis.schema import SCHEMA_VERSION, extraction_json_schema, parse_page_extraction
from cellora.analysis.tests.conftest import condition, page_payload, region


def _parse(payload: dict, page: int = 1):
    return parse_page_extraction(json.dumps(payload), expected_page=page)


class TestParsePageExtraction:
    def test_valid_payload(self) -> None:
        payload = page_payload(
            1,
            conditions=[condition("Melasma", 0.9)],
            regions=[region("cheeks", 72)],
            raw_metrics={"pigmentSpots": 4, "moistureLevel": 55.5, "skinType": "combination"},
            apparent_age=41,
        )
        extraction = _parse(payload)
        assert extraction.page_number == 1
        assert extraction.conditions[0].confidence == 0.9
        assert extraction.region_analysis[0].score == 72
        assert extraction.raw_metrics["skinType"] == "combination"
        assert extraction.apparent_age == 41

    def test_fenced_json_is_accepted(self) -> None:
        text = "Here is the analysis:\n```json\n" + json.dumps(page_payload(2)) + "\n```"
        assert parse_page_extraction(text, expected_page=2).page_number == 2

    def test_no_json_object(self) -> None:
        with pytest.raises(SchemaViolation, match="did not contain a JSON object"):
            parse_page_extraction("I cannot analyse this image.", expected_page=1)

    def test_array_is_rejected(self) -> None:
        with pytest.raises(SchemaViolation, match="Expected a JSON object"):
            parse_page_extraction("[1, 2, 3]", expected_page=1)

    def test_wrong_page_number(self) -> None:
        with pytest.raises(SchemaViolation, match="expected 3") as exc_info:
            _parse(page_payload(2), page=3)
        assert exc_info.value.page_number == 3

    def test_unknown_fields_are_ignored(self) -> None:
        payload = page_payload(1)
        payload["vendorNotes"] = "extra"
        assert _parse(payload).page_number == 1


class TestSchemaViolations:
    """Type and range violations are rejected, never coerced."""

    def test_confidence_above_one(self) -> None:
        with pytest.raises(SchemaViolation) as exc_info:
            _parse(page_payload(1, conditions=[condition("Melasma", 1.5)]))
        assert exc_info.value.kind is ErrorKind.SCHEMA_VIOLATION

    def test_confidence_as_string(self) -> None:
        bad = condition("Melasma")
        bad["confidence"] = "0.8"
        with pytest.raises(SchemaViolation):
            _parse(page_payload(1, conditions=[bad]))

    def test_score_out_of_range(self) -> None:
        with pytest.raises(SchemaViolation):
            _parse(page_payload(1, regions=[region("cheeks", 101, severity="normal")]))

    def test_score_as_float(self) -> None:
        bad = region("cheeks", 80)
        bad["score"] = 80.5
        with pytest.raises(SchemaViolation):
            _parse(page_payload(1, regions=[bad]))

    def test_unknown_image_type(self) -> None:
        with pytest.raises(SchemaViolation):
            _parse(page_payload(1, image_type="infrared"))

    def test_unknown_severity(self) -> None:
        with pytest.raises(SchemaViolation):
            _parse(page_payload(1, regions=[region("cheeks", 80, severity="critical")]))

    def test_severity_milder_than_score_band(self) -> None:
        with pytest.raises(SchemaViolation, match="contradicts score 30"):
            _parse(page_payload(1, regions=[region("cheeks", 30, severity="normal")]))

    def test_severity_worse_than_score_band(self) -> None:
        with pytest.raises(SchemaViolation, match="contradicts score 90"):
            _parse(page_payload(1, regions=[region("cheeks", 90, ("redness",), severity="severe")]))

    @pytest.mark.parametrize(
        ("score", "severity"),
        [(85, "normal"), (84, "mild"), (70, "mild"), (69, "moderate"), (50, "moderate"), (49, "severe")],
    )
    def test_severity_on_band_edges(self, score: int, severity: str) -> None:
        extraction = _parse(page_payload(1, regions=[region("cheeks", score, severity=severity)]))
        assert extraction.region_analysis[0].severity == severity

    def test_negative_count_metric(self) -> None:
        with pytest.raises(SchemaViolation, match="uvSpots"):
            _parse(page_payload(1, raw_metrics={"uvSpots": -2}))

    def test_count_metric_as_string(self) -> None:
        with pytest.raises(SchemaViolation, match="pigmentSpots"):
            _parse(page_payload(1, raw_metrics={"pigmentSpots": "many"}))

    def test_level_metric_out_of_range(self) -> None:
        with pytest.raises(SchemaViolation, match="moistureLevel"):
            _parse(page_payload(1, raw_metrics={"moistureLevel": 140}))

    def test_non_finite_metric(self) -> None:
        text = json.dumps(page_payload(1)).replace('"rawMetrics": {}', '"rawMetrics": {"poreDensity": NaN}')
        with pytest.raises(SchemaViolation, match="finite"):
            parse_page_extraction(text, expected_page=1)

    def test_missing_image_type(self) -> None:
        payload = page_payload(1)
        del payload["imageType"]
        with pytest.raises(SchemaViolation, match="imageType"):
            _parse(payload)


class TestJsonSchema:
    def test_uses_wire_names_and_version(self) -> None:
        schema = extraction_json_schema()
        assert schema["title"] == f"PageExtraction v{SCHEMA_VERSION}"
        assert "pageNumber" in schema["properties"]
        assert "regionAnalysis" in schema["properties"]
        assert "rawMetrics" in schema["properties"]
