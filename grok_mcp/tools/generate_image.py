"""
grok_generate_image: text-to-image generation.

Base64 results are returned as native MCP ``ImageContent``; URL results as
markdown links with an expiry note.
"""

import json
import time
from typing import Any

from mcp.types import CallToolResult, ImageContent, TextContent, Tool

from ..client import XAIClient
from ..errors import GrokMCPError
from ..governance import run_governed
from ..models import DEFAULT_IMAGE_MODEL, estimate_tokens
from ..results import QueryResult, TokenUsage
from ..services import Services
from .common import ToolInputError, failure, get_choice, get_int, get_string

MAX_IMAGES = 10
MAX_PROMPT_LENGTH = 10_000
RESPONSE_FORMATS = ["url", "b64_json"]
URL_EXPIRATION_NOTICE = "Image URLs are temporary and may expire. Download images if you need to keep them."

GENERATE_IMAGE_TOOL = Tool(
    name="grok_generate_image",
    description=(
        "Generate images from text descriptions using xAI's Grok image models. "
        f"Returns JPEG images as URLs or base64 data. Generates up to {MAX_IMAGES} images per request."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "prompt": {
                "type": "string",
                "minLength": 1,
                "maxLength": MAX_PROMPT_LENGTH,
                "description": "Text description of the image to generate",
            },
            "n": {
                "type": "integer",
                "minimum": 1,
                "maximum": MAX_IMAGES,
                "default": 1,
                "description": f"Number of images to generate (1-{MAX_IMAGES}, default: 1)",
            },
            "response_format": {
                "type": "string",
                "enum": RESPONSE_FORMATS,
                "default": "url",
                "description": (
                    "Response format: url (temporary URLs, easier to view) "
                    "or b64_json (base64 data, permanent)"
                ),
            },
            "model": {
                "type": "string",
                "description": f'Model to use (default: {DEFAULT_IMAGE_MODEL}). Also supports "image" alias.',
            },
        },
        "required": ["prompt"],
        "additionalProperties": False,
    },
)


async def execute_generate_image(
    client: XAIClient,
    prompt: str,
    model: str,
    n: int,
    response_format: str,
) -> QueryResult:
    start = time.monotonic()
    response = await client.generate_image(prompt=prompt, model=model, n=n, response_format=response_format)
    images = response.get("data") or []
    return QueryResult(
        response="",
        model=model,
        usage=TokenUsage(prompt_tokens=0, completion_tokens=0, total_tokens=0),
        cost=client.calculate_image_cost(model, len(images)),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={"images": images, "prompt": prompt, "response_format": response_format},
    )


def format_image_response(result: QueryResult) -> CallToolResult:
    """Build the tool result: a header, one entry per image, then a footer."""
    images: list[dict] = result.extra["images"]
    response_format = result.extra["response_format"]
    count = len(images)
    plural = "s" if count != 1 else ""

    content: list[Any] = [TextContent(
        type="text",
        text=f"**Generated {count} image{plural}** | Model: `{result.model}` | Prompt: _{result.extra['prompt']}_\n",
    )]
    if not images:
        content.append(TextContent(type="text", text="*No images were generated.*\n"))

    for i, img in enumerate(images):
        label = f"Image {i + 1}/{count}" if count > 1 else "Generated Image"
        if not img.get("respect_moderation", True):
            content.append(TextContent(type="text", text=f"\n**{label}**: Blocked by content moderation.\n"))
            continue

        b64 = img.get("b64_json") or img.get("image")
        if response_format == "b64_json" and b64:
            content.append(ImageContent(type="image", data=b64, mimeType="image/jpeg"))
            text = f"*{label} (base64 embedded, {round(len(b64) / 1024)}KB)*\n"
        elif img.get("url"):
            text = f"\n**{label}:** [View Image]({img['url']})\n"
        else:
            text = f"\n**{label}**: {json.dumps(img, indent=2)}\n"
        if img.get("revised_prompt"):
            text += f"  *Revised prompt:* {img['revised_prompt']}\n"
        content.append(TextContent(type="text", text=text))

    footer = ""
    if response_format == "url" and images:
        footer += f"\n*Note: {URL_EXPIRATION_NOTICE}*\n"
    footer += (
        f"\n---\n*{result.model} | {count} image{plural} | "
        f"${result.cost.estimated_usd:.4f} | {result.response_time_ms}ms*"
    )
    content.append(TextContent(type="text", text=footer))

    return CallToolResult(content=content)


async def handle_grok_generate_image(
    arguments: dict[str, Any],
    client: XAIClient,
    services: Services,
) -> CallToolResult:
    """Handle grok_generate_image tool invocation."""
    try:
        prompt = get_string(arguments, "prompt", required=True, max_length=MAX_PROMPT_LENGTH).strip()
        n = get_int(arguments, "n", default=1, minimum=1, maximum=MAX_IMAGES)
        response_format = get_choice(arguments, "response_format", RESPONSE_FORMATS, "url")
        model = client.resolve_model(get_string(arguments, "model") or DEFAULT_IMAGE_MODEL)

        result = await run_governed(
            services,
            lambda: execute_generate_image(client, prompt, model, n, response_format),
            model=model,
            estimated_input_tokens=estimate_tokens(prompt),
            estimated_cost=client.calculate_image_cost(model, n).estimated_usd,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Image generation failed", e)

    return format_image_response(result)
