"""Integration tests against the live xAI API (requires XAI_API_KEY)."""
import os
import pytest

from grok_mcp.client import create_client
from grok_mcp.services import create_services

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.environ.get("XAI_API_KEY"), reason="XAI_API_KEY not set"),
]


@pytest.fixture
def live_client():
    return create_client()


@pytest.fixture
def live_services():
    return create_services()


class TestImageGenerationIntegration:

    @pytest.mark.asyncio
    async def test_generate_single_image_url(self, live_client, live_services):
        from grok_mcp.tools.generate_image import handle_grok_generate_image
        result = await handle_grok_generate_image({
            "prompt": "A simple red circle on white background",
            "n": 1,
            "response_format": "url",
        }, live_client, live_services)
        assert not result.isError
        texts = " ".join(c.text for c in result.content if hasattr(c, "text"))
        assert "http" in texts

    @pytest.mark.asyncio
    async def test_generate_single_image_base64(self, live_client, live_services):
        from grok_mcp.tools.generate_image import handle_grok_generate_image
        result = await handle_grok_generate_image({
            "prompt": "A blue square",
            "n": 1,
            "response_format": "b64_json",
        }, live_client, live_services)
        assert not result.isError
        image_contents = [c for c in result.content if getattr(c, "type", "") == "image"]
        assert len(image_contents) >= 1
        assert live_services.cost_tracker.get_total_cost() > 0


class TestModelsIntegration:

    @pytest.mark.asyncio
    async def test_models_list_includes_grok(self, live_client):
        from grok_mcp.tools.list_models import handle_grok_models
        result = await handle_grok_models({}, live_client)
        assert not result.isError
        assert "grok" in result.content[0].text

    @pytest.mark.asyncio
    async def test_validate_api_key(self, live_client):
        assert await live_client.validate_api_key()
