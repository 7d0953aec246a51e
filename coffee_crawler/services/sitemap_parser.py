"""
Sitemap parsing for roaster websites.

Handles plain sitemaps, sitemap indexes (followed recursively), and gzipped
sitemaps. When a brand has no sitemap URL on record, the sitemap is looked
up from robots.txt, falling back to /sitemap.xml.
"""

import gzip
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set
from urllib.parse import urljoin
from xml.etree import ElementTree as ET

import httpx
from asgiref.sync import async_to_sync
from django.conf import settings

logger = logging.getLogger(__name__)

SITEMAP_NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}

# Shopify sitemap indexes can nest one level; guard against cycles anyway
MAX_INDEX_DEPTH = 3

_ROBOTS_SITEMAP_RE = re.compile(r"^\s*Sitemap:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


class SitemapParseError(Exception):
    """Raised when a sitemap cannot be fetched or parsed."""

    pass


@dataclass
class SitemapResult:
    """
    One parsed sitemap document.

    Attributes:
        urls: Page URLs listed in a urlset
        child_sitemaps: Sitemap URLs listed in an index
        is_index: Whether the document was a sitemap index
    """

    source: str
    urls: List[str] = field(default_factory=list)
    child_sitemaps: List[str] = field(default_factory=list)
    is_index: bool = False


class SitemapParser:
    """Async sitemap fetcher and parser."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        max_size_bytes: int = 20 * 1024 * 1024,
    ):
        self.timeout = timeout or getattr(settings, "CRAWLER_REQUEST_TIMEOUT", 30)
        self.user_agent = user_agent or getattr(
            settings, "CRAWLER_USER_AGENT", "BeansFinderCrawler/1.0"
        )
        self.max_size_bytes = max_size_bytes

    async def parse_sitemap(self, url: str) -> SitemapResult:
        """
        Fetch and parse one sitemap document.

        Raises:
            SitemapParseError: On fetch failure or invalid XML
        """
        logger.info(f"Parsing sitemap: {url}")

        try:
            content = await self._fetch(url, accept="application/xml, text/xml, */*")
        except httpx.TimeoutException as e:
            raise SitemapParseError(f"Timeout fetching sitemap: {e}") from e
        except httpx.HTTPError as e:
            raise SitemapParseError(f"Failed to fetch sitemap: {e}") from e

        if url.endswith(".gz") or content[:2] == b"\x1f\x8b":
            try:
                content = gzip.decompress(content)
            except OSError as e:
                raise SitemapParseError(f"Failed to decompress gzipped sitemap: {e}") from e

        return self._parse_xml(content, url)

    async def collect_urls(self, url: str) -> List[str]:
        """
        Collect every page URL reachable from a sitemap or sitemap index.

        Child sitemaps that fail to parse are logged and skipped; a failure on
        the root document raises.

        Returns:
            Page URLs in document order, duplicates removed
        """
        seen_sitemaps: Set[str] = set()
        collected: List[str] = []
        seen_urls: Set[str] = set()

        async def walk(sitemap_url: str, depth: int):
            if sitemap_url in seen_sitemaps or depth > MAX_INDEX_DEPTH:
                return
            seen_sitemaps.add(sitemap_url)

            try:
                result = await self.parse_sitemap(sitemap_url)
            except SitemapParseError as e:
                if depth == 0:
                    raise
                logger.warning(f"Skipping child sitemap {sitemap_url}: {e}")
                return

            for page_url in result.urls:
                if page_url not in seen_urls:
                    seen_urls.add(page_url)
                    collected.append(page_url)

            for child in result.child_sitemaps:
                await walk(child, depth + 1)

        await walk(url, 0)
        logger.info(f"Collected {len(collected)} URLs from {url}")
        return collected

    async def discover_sitemap(self, website: str) -> Optional[str]:
        """
        Find a site's sitemap from robots.txt.

        Returns:
            First Sitemap: directive, else <website>/sitemap.xml
        """
        robots_url = urljoin(website.rstrip("/") + "/", "robots.txt")

        try:
            content = await self._fetch(robots_url, accept="text/plain, */*")
            sitemaps = _ROBOTS_SITEMAP_RE.findall(content.decode("utf-8", errors="replace"))
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch robots.txt for {website}: {e}")
            sitemaps = []

        if sitemaps:
            logger.info(f"Found sitemap in robots.txt for {website}: {sitemaps[0]}")
            return sitemaps[0]

        return urljoin(website.rstrip("/") + "/", "sitemap.xml")

    async def _fetch(self, url: str, accept: str) -> bytes:
        headers = {"User-Agent": self.user_agent, "Accept": accept}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, headers=headers, follow_redirects=True)
            response.raise_for_status()

            content_length = response.headers.get("content-length")
            if content_length and int(content_length) > self.max_size_bytes:
                raise SitemapParseError(
                    f"Sitemap too large: {content_length} bytes exceeds {self.max_size_bytes}"
                )

            return response.content

    def _parse_xml(self, content: bytes, source_url: str) -> SitemapResult:
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise SitemapParseError(f"Invalid XML: {e}") from e

        root_tag = root.tag.lower()
        if "sitemapindex" in root_tag:
            children = self._locs(root, "sitemap")
            logger.info(f"Parsed sitemap index with {len(children)} child sitemaps")
            return SitemapResult(source=source_url, child_sitemaps=children, is_index=True)

        if "urlset" in root_tag:
            urls = self._locs(root, "url")
            logger.info(f"Parsed sitemap with {len(urls)} URLs")
            return SitemapResult(source=source_url, urls=urls)

        raise SitemapParseError(f"Unknown sitemap root element: {root.tag}")

    def _locs(self, root: ET.Element, entry_tag: str) -> List[str]:
        """<loc> text of each entry, with or without the sitemap namespace."""
        entries = root.findall(f"sm:{entry_tag}", SITEMAP_NS) or root.findall(entry_tag)

        locs = []
        for entry in entries:
            loc = entry.find("sm:loc", SITEMAP_NS)
            if loc is None:
                loc = entry.find("loc")
            if loc is not None and loc.text and loc.text.strip():
                locs.append(loc.text.strip())
        return locs


def get_sitemap_parser() -> SitemapParser:
    """Factory function returning a parser configured from settings."""
    return SitemapParser()


def fetch_sitemap_urls(sitemap_url: str) -> List[str]:
    """Synchronous wrapper around SitemapParser.collect_urls."""
    return async_to_sync(get_sitemap_parser().collect_urls)(sitemap_url)


def discover_sitemap_url(website: str) -> Optional[str]:
    """Synchronous wrapper around SitemapParser.discover_sitemap."""
    return async_to_sync(get_sitemap_parser().discover_sitemap)(website)
