"""Shared Pydantic base models for the HTTP layer."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class CelloraBase(BaseModel):
    """Base model with shared config for all Cellora request schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
