"""Tests for the Anthropic vision client: request shape and error mapping."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from cellora.analysis.base import ImageType, PageClassification
from cellora.analysis.errors import ExtractionFailed, ExtractionTimeout, ExtractionTransient
from cellora.analysis.inference import AnthropicVisionClient, ExtractionRequest
from cellora.analysis.schema import SCHEMA_VERSION
from cellora.analysis.tests.conftest import make_png

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _client(create: AsyncMock) -> AnthropicVisionClient:
    sdk = MagicMock()
    sdk.messages.create = create
    return AnthropicVisionClient(model="test-model", client=sdk)


def _request(page: int = 2) -> ExtractionRequest:
    return ExtractionRequest(
        page_number=page,
        total_pages=5,
        image_bytes=make_png(),
        mime_type="image/png",
        classification=PageClassification(page, ImageType.UV, 0.95),
    )


def _status_error(status: int) -> anthropic.APIStatusError:
    response = httpx.Response(status, request=_REQUEST)
    return anthropic.APIStatusError(f"status {status}", response=response, body=None)


class TestRequest:
    def test_prompt_carries_page_schema_and_hint(self) -> None:
        prompt = _request().user_prompt()
        assert "page 2 of 5" in prompt
        assert '"uv"' in prompt
        assert f"schema version {SCHEMA_VERSION}" in prompt
        assert "pageNumber" in prompt

    def test_prompt_without_classification(self) -> None:
        request = ExtractionRequest(1, 1, make_png(), "image/png")
        assert '"other"' in request.user_prompt()

    @pytest.mark.asyncio
    async def test_sends_image_and_joins_text_blocks(self) -> None:
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text='{"pageNumber": 2,'),
                SimpleNamespace(type="tool_use", text="ignored"),
                SimpleNamespace(type="text", text=' "imageType": "uv"}'),
            ],
            stop_reason="end_turn",
        )
        create = AsyncMock(return_value=response)

        text = await _client(create).extract(_request())

        assert text == '{"pageNumber": 2, "imageType": "uv"}'
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        image_block, text_block = kwargs["messages"][0]["content"]
        assert image_block["type"] == "image"
        assert image_block["source"]["media_type"] == "image/png"
        assert text_block["type"] == "text"


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        create = AsyncMock(side_effect=anthropic.APITimeoutError(request=_REQUEST))
        with pytest.raises(ExtractionTimeout) as exc_info:
            await _client(create).extract(_request())
        assert exc_info.value.page_number == 2
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        create = AsyncMock(side_effect=anthropic.APIConnectionError(request=_REQUEST))
        with pytest.raises(ExtractionTransient):
            await _client(create).extract(_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 529])
    async def test_retryable_status(self, status: int) -> None:
        create = AsyncMock(side_effect=_status_error(status))
        with pytest.raises(ExtractionTransient, match=str(status)):
            await _client(create).extract(_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 413])
    async def test_permanent_status(self, status: int) -> None:
        create = AsyncMock(side_effect=_status_error(status))
        with pytest.raises(ExtractionFailed) as exc_info:
            await _client(create).extract(_request())
        assert not exc_info.value.retryable
