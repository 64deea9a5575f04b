"""
scrape_urls — fetch web pages (docs, references) and hand the model plain text.

The only tool whose side effect leaves the document store. Each URL is
fetched independently; any failure of one URL (a timeout, an HTTP status,
an invalid URL) becomes that URL's error entry and never aborts the batch.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
import re

import httpx
from pydantic import BaseModel, Field, field_validator

from .base import Tool, ToolContext

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; PolarisBot/0.1)"


class ScrapeUrlsParams(BaseModel):
    urls: list[str] = Field(description="Array of URLs to fetch (http or https)")

    @field_validator("urls")
    @classmethod
    def _check_urls(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("Provide at least one URL")
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid URL: {url}")
        return v


def html_to_text(raw: str) -> str:
    """Convert HTML to readable text, keeping code blocks and headings."""
    text = re.sub(r'<script[^>]*>.*?</script>', '', raw, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<style[^>]*>.*?</style>', '', text, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<pre[^>]*>(.*?)</pre>', r'\n```\n\1\n```\n', text, flags=re.DOTALL)
    text = re.sub(r'<code[^>]*>(.*?)</code>', r'`\1`', text, flags=re.DOTALL)
    text = re.sub(r'<h([1-6])[^>]*>(.*?)</h\1>', r'\n\n## \2\n\n', text, flags=re.DOTALL)
    text = re.sub(r'<li[^>]*>(.*?)</li>', r'- \1\n', text, flags=re.DOTALL)
    text = re.sub(r'<p[^>]*>(.*?)</p>', r'\1\n\n', text, flags=re.DOTALL)
    text = re.sub(r'<[^>]+>', '', text)
    text = html.unescape(text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return re.sub(r' +', ' ', text).strip()


async def _fetch_one(client: httpx.AsyncClient, url: str, max_chars: int) -> dict:
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.TimeoutException:
        logger.warning("[tools] scrape timed out: %s", url)
        return {"url": url, "error": "Request timed out"}
    except httpx.HTTPStatusError as e:
        return {"url": url, "error": f"HTTP {e.response.status_code}"}
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("[tools] scrape failed for %s: %s", url, e)
        return {"url": url, "error": str(e) or type(e).__name__}

    content_type = response.headers.get("content-type", "")
    text = html_to_text(response.text) if "html" in content_type else response.text.strip()
    truncated = len(text) > max_chars
    result = {"url": url, "content": text[:max_chars]}
    if truncated:
        result["truncated"] = True
    return result


def create_scrape_urls_tool(ctx: ToolContext) -> Tool:
    async def handler(params: ScrapeUrlsParams) -> str:
        async def _scrape() -> str:
            async with httpx.AsyncClient(
                timeout=ctx.settings.scrape_timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                transport=ctx.http_transport,
            ) as client:
                outcomes = await asyncio.gather(
                    *(_fetch_one(client, url, ctx.settings.scrape_max_chars) for url in params.urls),
                    return_exceptions=True,
                )
            results = []
            for url, outcome in zip(params.urls, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning("[tools] scrape failed for %s: %s", url, outcome)
                    outcome = {"url": url, "error": str(outcome) or type(outcome).__name__}
                elif isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)
            logger.info("[tools] scraped %d url(s), %d failed", len(results), sum(1 for r in results if "error" in r))
            return json.dumps(list(results))

        return await ctx.step.run("scrape-urls", _scrape)

    return Tool(
        name="scrape_urls",
        description=(
            "Fetch web pages (documentation, references) and return their text content. "
            "Returns a JSON array of {url, content} or {url, error} per URL."
        ),
        params=ScrapeUrlsParams,
        handler=handler,
        action="scraping URLs",
    )
