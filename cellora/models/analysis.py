"""Request/response schemas for the analysis endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import Field, model_validator

from cellora.models.base import CelloraBase


class AnalyzeRequest(CelloraBase):
    """JSON body for ``POST /analysis``.

    Exactly one of ``base64`` (with ``fileName``) or ``filePath`` is given.
    """

    base64: str | None = None
    file_name: str | None = Field(default=None, alias="fileName")
    file_path: str | None = Field(default=None, alias="filePath")
    actual_age: int | None = Field(default=None, alias="actualAge", ge=1, le=120)

    @model_validator(mode="after")
    def _one_source(self) -> "AnalyzeRequest":
        if bool(self.base64) == bool(self.file_path):
            raise ValueError("Provide exactly one of 'base64' or 'filePath'")
        if self.base64 and not self.file_name:
            raise ValueError("'fileName' is required with 'base64'")
        return self


class AnalysisResponse(CelloraBase):
    success: bool = True
    analysis: dict[str, Any]


class SchemaResponse(CelloraBase):
    schema_version: str = Field(alias="schemaVersion")
    json_schema: dict[str, Any] = Field(alias="schema")
