"""Web tools: fetch a page as plain text."""
import html
import logging
import re
from urllib.parse import urlparse

import httpx

from ..contract import ErrorCode, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS = 5000
_SCRIPT_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def html_to_text(body: str) -> str:
    body = _SCRIPT_RE.sub(" ", body)
    body = _TAG_RE.sub(" ", body)
    return _WS_RE.sub(" ", html.unescape(body)).strip()


@register_tool(
    "read_url",
    description="Fetch a web page and return its text",
    params=[ToolParam("url", description="http(s) URL or bare domain")],
)
async def read_url(ctx, url: str) -> ToolResult:
    url = url.strip()
    if "://" not in url:
        url = "https://" + url
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return failure(ErrorCode.VALIDATION_ERROR, f"Unsupported URL: {url}", {"field": "url"})

    try:
        async with httpx.AsyncClient(timeout=15, follow_redirects=True) as client:
            resp = await client.get(url, headers={"User-Agent": "assistant/0.3"})
            resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error(f"read_url {url}: HTTP {e.response.status_code}")
        return failure(ErrorCode.EXEC_ERROR, f"HTTP {e.response.status_code} for {url}",
                       {"url": url, "status": e.response.status_code})
    except httpx.HTTPError as e:
        logger.error(f"read_url {url}: {e}")
        return failure(ErrorCode.EXEC_ERROR, f"Fetch failed for {url}: {e}", {"url": url})

    content_type = resp.headers.get("content-type", "")
    text = html_to_text(resp.text) if "html" in content_type else resp.text.strip()
    truncated = len(text) > MAX_TEXT_CHARS
    return success({
        "url": str(resp.url),
        "status": resp.status_code,
        "content": text[:MAX_TEXT_CHARS],
        "truncated": truncated,
    })


@register_tool(
    "get_weather",
    description="Get the weather for a location",
    params=[ToolParam("location", description="city name")],
    status="stub",
)
async def get_weather(ctx, location: str) -> ToolResult:
    return failure(ErrorCode.EXEC_ERROR, "Weather lookup is not configured", {"location": location})
