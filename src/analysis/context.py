"""
Supporting content for AI analysis.

Fetches the pages saved under a tag and reduces them to plain text. Each
fetch is bounded by its own timeout; a slow or failing page is skipped and
the analysis proceeds with whatever was collected.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_CHARS_PER_PAGE = 4000
USER_AGENT = "LinkRangerBot/1.0 (+https://linkranger.app)"


def extract_text(html: str, max_chars: int = MAX_CHARS_PER_PAGE) -> str:
    """Visible text of an HTML page, with title first and boilerplate removed."""
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    title_tag = soup.find("title")
    if title_tag:
        title = title_tag.get_text().strip()

    for element in soup(["script", "style", "nav", "footer", "header", "noscript"]):
        element.decompose()

    lines = [line.strip() for line in soup.get_text(separator="\n").splitlines()]
    body = "\n".join(line for line in lines if line)
    text = f"{title}\n{body}" if title else body
    return text[:max_chars]


async def _fetch_one(client: httpx.AsyncClient, url: str) -> str:
    response = await client.get(url, follow_redirects=True)
    response.raise_for_status()
    return extract_text(response.text)


async def fetch_supporting_content(
    urls: Sequence[str],
    timeout_seconds: float = 20.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[str]:
    """
    Fetch every URL concurrently, each under its own timeout.

    Returns the texts that arrived in time, in input order. Never raises
    for an individual page.
    """
    if not urls:
        return []

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(headers={"User-Agent": USER_AGENT})

    async def bounded(url: str) -> Optional[str]:
        try:
            return await asyncio.wait_for(_fetch_one(client, url), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Supporting content fetch timed out after {timeout_seconds}s: {url}")
        except httpx.HTTPError as e:
            logger.warning(f"Supporting content fetch failed for {url}: {e}")
        return None

    try:
        results = await asyncio.gather(*(bounded(url) for url in urls))
    finally:
        if owns_client:
            await client.aclose()

    texts = [text for text in results if text]
    if len(texts) < len(urls):
        logger.info(f"Proceeding with partial context ({len(texts)}/{len(urls)} pages)")
    return texts
