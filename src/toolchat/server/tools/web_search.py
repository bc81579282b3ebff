"""Web search tool backed by the DuckDuckGo Instant Answer API."""

import logging
from typing import Any

import httpx

from toolchat.server.tools.base import ServerTool, ToolExecutionError
from toolchat.tools.types import ParameterSpec

logger = logging.getLogger(__name__)

DUCKDUCKGO_URL = "https://api.duckduckgo.com/"
DEFAULT_MAX_RESULTS = 5


class WebSearchTool(ServerTool):
    """Searches the web and returns titles, links and snippets."""

    name = "web_search"
    description = "Search the internet and return the most relevant results"
    parameters = {
        "query": ParameterSpec(type="string", required=True, description="Search query"),
        "max_results": ParameterSpec(
            type="integer", description=f"Maximum number of results (default {DEFAULT_MAX_RESULTS})"
        ),
    }

    def __init__(
        self,
        url: str = DUCKDUCKGO_URL,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        query = arguments["query"].strip()
        max_results = arguments.get("max_results") or DEFAULT_MAX_RESULTS
        if not query:
            raise ToolExecutionError("Query must not be empty")
        if max_results < 1:
            raise ToolExecutionError("max_results must be at least 1")

        logger.info(f"Searching for {query!r} (max_results={max_results})")
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": "toolchat/0.1"},
        ) as client:
            try:
                response = await client.get(self.url, params=params)
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise ToolExecutionError(f"Search request failed: {e}") from e

        results = parse_results(data, max_results)
        logger.info(f"Search for {query!r} returned {len(results)} results")
        return {"query": query, "results": results}


def parse_results(data: dict[str, Any], max_results: int) -> list[dict[str, str]]:
    """Extract up to max_results results from an Instant Answer response."""
    results: list[dict[str, str]] = []

    if data.get("AbstractText"):
        results.append(
            {
                "title": data.get("Heading") or "Summary",
                "link": data.get("AbstractURL", ""),
                "snippet": data["AbstractText"],
            }
        )

    for topic in _flatten_topics(data.get("RelatedTopics") or []):
        if len(results) >= max_results:
            break
        text, url = topic.get("Text"), topic.get("FirstURL")
        if text and url:
            results.append({"title": text.split(" - ")[0], "link": url, "snippet": text})

    return results[:max_results]


def _flatten_topics(topics: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Disambiguation groups nest their entries under "Topics"
    flat = []
    for topic in topics:
        if "Topics" in topic:
            flat.extend(topic["Topics"])
        else:
            flat.append(topic)
    return flat
