"""Tests for the image generation tool."""
import pytest
from unittest.mock import AsyncMock, patch
from mcp.types import ImageContent

from grok_mcp.results import CostEstimate, QueryResult, TokenUsage
from grok_mcp.tools.generate_image import format_image_response, handle_grok_generate_image


def image_result(images, response_format="url", prompt="A cat"):
    return QueryResult(
        response="",
        model="grok-2-image-1212",
        usage=TokenUsage(),
        cost=CostEstimate(0.003 * len(images), 0, 0, "grok-2-image-1212", 2.0, 10.0),
        extra={"images": images, "prompt": prompt, "response_format": response_format},
    )


def all_text(result):
    return " ".join(c.text for c in result.content if hasattr(c, "text"))


class TestGenerateImage:
    """Tests for the grok_generate_image handler."""

    @pytest.mark.asyncio
    async def test_missing_prompt_returns_error(self, client, services):
        result = await handle_grok_generate_image({}, client, services)
        assert result.isError is True
        assert "prompt" in result.content[0].text.lower()

    @pytest.mark.asyncio
    async def test_basic_generation_url_format(self, client, services):
        mock = AsyncMock(return_value={"data": [{"url": "https://example.com/image.jpg"}]})
        with patch.object(client, "generate_image", new=mock):
            result = await handle_grok_generate_image(
                {"prompt": "A cat", "response_format": "url"}, client, services
            )
        assert not result.isError
        assert "https://example.com/image.jpg" in all_text(result)
        mock.assert_awaited_once_with(prompt="A cat", model="grok-2-image-1212", n=1, response_format="url")

    @pytest.mark.asyncio
    async def test_basic_generation_b64_format(self, client, services):
        mock = AsyncMock(return_value={"data": [{"b64_json": "iVBORw0KGgoAAAANSUhEUg=="}]})
        with patch.object(client, "generate_image", new=mock):
            result = await handle_grok_generate_image(
                {"prompt": "A cat", "response_format": "b64_json"}, client, services
            )
        assert not result.isError
        image_contents = [c for c in result.content if getattr(c, "type", "") == "image"]
        assert len(image_contents) == 1

    @pytest.mark.asyncio
    async def test_batch_generation_is_charged_per_image(self, client, services):
        mock = AsyncMock(return_value={"data": [
            {"url": "https://example.com/1.jpg"},
            {"url": "https://example.com/2.jpg"},
            {"url": "https://example.com/3.jpg"},
        ]})
        with patch.object(client, "generate_image", new=mock):
            result = await handle_grok_generate_image({"prompt": "A cat", "n": 3}, client, services)

        assert not result.isError
        assert "Generated 3 images" in all_text(result)
        assert services.cost_tracker.get_total_cost() == pytest.approx(0.009)

    @pytest.mark.asyncio
    async def test_rejects_too_many_images(self, client, services):
        result = await handle_grok_generate_image({"prompt": "A cat", "n": 11}, client, services)
        assert result.isError is True

    @pytest.mark.asyncio
    async def test_budget_refusal_skips_api_call(self, client, services):
        services.cost_tracker.add_cost(9.999, "grok-4-0709")
        mock = AsyncMock()
        with patch.object(client, "generate_image", new=mock):
            result = await handle_grok_generate_image({"prompt": "A cat", "n": 2}, client, services)
        assert result.isError is True
        mock.assert_not_awaited()


class TestFormatImageResponse:
    """Tests for the format_image_response helper."""

    def test_single_url_response(self):
        result = format_image_response(image_result([{"url": "https://example.com/image.jpg"}]))
        text = all_text(result)
        assert "**Generated 1 image**" in text
        assert "[View Image](https://example.com/image.jpg)" in text
        assert "temporary" in text

    def test_batch_url_response(self):
        result = format_image_response(image_result([
            {"url": "https://example.com/1.jpg"},
            {"url": "https://example.com/2.jpg"},
        ], prompt="Cats"))
        text = all_text(result)
        assert "2 images" in text
        assert "Image 1/2" in text
        assert "Image 2/2" in text

    def test_b64_response_returns_image_content(self):
        result = format_image_response(image_result([{"b64_json": "iVBORw0KGgoAAAANSUhEUg=="}], "b64_json"))
        image_contents = [c for c in result.content if isinstance(c, ImageContent)]
        assert len(image_contents) == 1
        assert image_contents[0].data == "iVBORw0KGgoAAAANSUhEUg=="
        assert "temporary" not in all_text(result)

    def test_moderation_blocked_response(self):
        result = format_image_response(image_result([{"url": "", "respect_moderation": False}]))
        assert "moderation" in all_text(result).lower()

    def test_revised_prompt_is_shown(self):
        result = format_image_response(image_result([
            {"url": "https://example.com/1.jpg", "revised_prompt": "A fluffy cat"},
        ]))
        assert "*Revised prompt:* A fluffy cat" in all_text(result)

    def test_fallback_raw_response(self):
        result = format_image_response(image_result([{"unknown_field": "data"}]))
        assert "unknown_field" in all_text(result)

    def test_empty_response(self):
        result = format_image_response(image_result([]))
        assert "No images were generated" in all_text(result)
