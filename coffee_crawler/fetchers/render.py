"""
Render service: product URL -> visible product text.

Static pages are fetched with httpx and parsed with BeautifulSoup. Pages that
look JavaScript-rendered (Shopify metafields, Next.js, React roots) are
rendered in headless Chromium via Playwright, with accordions and <details>
blocks expanded so that tasting notes hidden in tabs are captured.

extract_product_text() never raises; it returns "" on any failure.
Each call owns its browser, launched only when a page needs one.
"""

import asyncio
import logging
import re
from typing import Optional

import httpx
from asgiref.sync import async_to_sync
from bs4 import BeautifulSoup
from django.conf import settings

logger = logging.getLogger(__name__)

JS_RENDER_MARKERS = (
    "const metafields",
    "__NEXT_DATA__",
    "window.INITIAL_STATE",
    "var Shopify",
    "data-react-helmet",
)

DESCRIPTION_SELECTORS = (
    ".product-single__description",
    ".product__description",
    ".product-description",
    ".rte",
    ".product__content-text",
    ".product-meta",
    "[data-product-description]",
    ".accordion__content",
    ".tab-content",
    ".product__info-wrapper",
    ".product-single__content-text",
)

CONTAINER_SELECTORS = (
    ".product-single__content",
    ".product__content",
    ".product-details",
    ".product-single",
    ".product-info",
    "main .product",
    "article.product",
    ".product",
    "main",
    "article",
    "#MainContent",
    "#main-content",
    "[role=main]",
    "body",
)

NOISE_TAGS = ("script", "style", "nav", "footer", "header", "iframe", "noscript")

MIN_DESCRIPTION_CHARS = 50
MIN_CONTAINER_CHARS = 200

_WHITESPACE_RE = re.compile(r"\s+")

# Runs in the page after accordions are expanded; mirrors extract_text_from_html
_EXTRACT_TEXT_JS = """
([noiseTags, descriptionSelectors, containerSelectors, minDescription, minContainer]) => {
    noiseTags.forEach(tag => document.querySelectorAll(tag).forEach(el => el.remove()));

    const parts = [];
    const seen = new Set();
    for (const selector of descriptionSelectors) {
        document.querySelectorAll(selector).forEach(el => {
            const text = (el.innerText || '').trim();
            if (text.length > minDescription && !seen.has(text)) {
                seen.add(text);
                parts.push(text);
            }
        });
    }
    if (parts.length) {
        return parts.join('\\n\\n');
    }

    for (const selector of containerSelectors) {
        const el = document.querySelector(selector);
        if (el) {
            const text = (el.innerText || '').trim();
            if (text.length > minContainer) {
                return text;
            }
        }
    }
    return document.body ? document.body.innerText : '';
}
"""

_EXPAND_ACCORDIONS_JS = """
() => {
    document.querySelectorAll('details').forEach(el => el.setAttribute('open', ''));
    document.querySelectorAll('[aria-expanded="false"]').forEach(el => {
        try { el.click(); } catch (e) {}
    });
}
"""


class RenderError(Exception):
    """Raised internally when a page cannot be fetched or rendered."""

    pass


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def is_javascript_rendered(html: str) -> bool:
    """
    Heuristic: does this page need a browser to show its product text?

    True when the HTML carries a known client-side framework marker, or is an
    empty React root with almost no other markup.
    """
    if not html:
        return False

    if any(marker in html for marker in JS_RENDER_MARKERS):
        return True

    if '<div id="root"></div>' in html and len(html.split("<div")) < 10:
        return True

    return False


def extract_text_from_html(html: str) -> str:
    """
    Extract product text from static HTML.

    Collects description blocks first; falls back to the first large
    container, then the whole body.
    """
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(list(NOISE_TAGS)):
        tag.decompose()

    parts = []
    seen = set()
    for selector in DESCRIPTION_SELECTORS:
        for element in soup.select(selector):
            text = collapse_whitespace(element.get_text(separator=" "))
            if len(text) > MIN_DESCRIPTION_CHARS and text not in seen:
                seen.add(text)
                parts.append(text)

    if parts:
        return collapse_whitespace(" ".join(parts))

    for selector in CONTAINER_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            text = collapse_whitespace(element.get_text(separator=" "))
            if len(text) > MIN_CONTAINER_CHARS:
                return text

    body = soup.body or soup
    return collapse_whitespace(body.get_text(separator=" "))


class BrowserSession:
    """
    Headless Chromium owned by one extraction call.

    The browser is launched on first use and closed when the session exits,
    on the same event loop that launched it.
    """

    def __init__(self):
        self._playwright = None
        self._browser = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def launched(self) -> bool:
        return self._browser is not None

    async def get_browser(self):
        if self._browser is None:
            self._playwright, self._browser = await self._launch()
            logger.info("Playwright browser initialized for product rendering")
        return self._browser

    async def _launch(self):
        try:
            from playwright.async_api import async_playwright
        except ImportError:
            raise RuntimeError(
                "Playwright not installed. Install with: "
                "pip install playwright && playwright install chromium"
            )

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=True,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                ],
            )
        except Exception:
            await playwright.stop()
            raise
        return playwright, browser

    async def close(self):
        """Close the browser and stop Playwright, if they were started."""
        if self._browser is not None:
            await self._browser.close()
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class RenderService:
    """
    URL -> visible text, choosing a static or browser path per page.
    """

    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-GB,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
    }

    # Seconds to let client-side scripts settle, before and after expanding accordions
    PAGE_SETTLE_SECONDS = 2.0
    ACCORDION_SETTLE_SECONDS = 0.5

    def __init__(
        self,
        timeout: Optional[float] = None,
        render_timeout: Optional[float] = None,
    ):
        self.timeout = timeout or getattr(settings, "CRAWLER_REQUEST_TIMEOUT", 30)
        self.render_timeout = render_timeout or getattr(
            settings, "CRAWLER_RENDER_TIMEOUT", 25
        )

    def extract_product_text(self, url: str) -> str:
        """
        Return the visible product text of a page, or "" on failure.
        """
        try:
            return async_to_sync(self.aextract_product_text)(url)
        except Exception as e:
            logger.error(f"Error extracting text from {url}: {e}")
            return ""

    async def aextract_product_text(
        self, url: str, session: Optional[BrowserSession] = None
    ) -> str:
        """
        Async variant of extract_product_text().

        Pass a session to share one browser across several pages; without
        one, a browser is launched for this call only if it is needed.
        """
        if session is None:
            async with BrowserSession() as own_session:
                return await self._extract(url, own_session)
        return await self._extract(url, session)

    async def _extract(self, url: str, session: BrowserSession) -> str:
        logger.info(f"Extracting product text from: {url}")

        try:
            html = await self._fetch_static(url)
        except RenderError as e:
            logger.warning(f"Static fetch failed for {url}, trying browser: {e}")
            html = None

        if html is not None and not is_javascript_rendered(html):
            text = extract_text_from_html(html)
            if len(text) > MIN_DESCRIPTION_CHARS:
                logger.info(f"Extracted {len(text)} chars (static) from: {url}")
                return text

        try:
            text = await self._render(url, session)
        except RenderError as e:
            logger.error(f"Browser render failed for {url}: {e}")
            return ""

        logger.info(f"Extracted {len(text)} chars (browser) from: {url}")
        return text

    async def _fetch_static(self, url: str) -> str:
        headers = {"User-Agent": self.DEFAULT_USER_AGENT, **self.DEFAULT_HEADERS}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=headers, follow_redirects=True)
                response.raise_for_status()
                return response.text

        except httpx.TimeoutException as e:
            raise RenderError(f"Timeout after {self.timeout}s") from e

        except httpx.HTTPStatusError as e:
            raise RenderError(f"HTTP error {e.response.status_code}") from e

        except httpx.HTTPError as e:
            raise RenderError(f"Request error: {e}") from e

    async def _render(self, url: str, session: BrowserSession) -> str:
        try:
            browser = await session.get_browser()
        except Exception as e:
            raise RenderError(f"Browser launch failed: {e}") from e

        try:
            context = await browser.new_context(user_agent=self.DEFAULT_USER_AGENT)
        except Exception as e:
            raise RenderError(f"Playwright error: {e}") from e

        try:
            page = await context.new_page()
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.render_timeout * 1000,
            )
            await asyncio.sleep(self.PAGE_SETTLE_SECONDS)

            await page.evaluate(_EXPAND_ACCORDIONS_JS)
            await asyncio.sleep(self.ACCORDION_SETTLE_SECONDS)

            text = await page.evaluate(
                _EXTRACT_TEXT_JS,
                [
                    list(NOISE_TAGS),
                    list(DESCRIPTION_SELECTORS),
                    list(CONTAINER_SELECTORS),
                    MIN_DESCRIPTION_CHARS,
                    MIN_CONTAINER_CHARS,
                ],
            )
            return collapse_whitespace(text)

        except Exception as e:
            raise RenderError(f"Playwright error: {e}") from e

        finally:
            await context.close()


def get_render_service() -> RenderService:
    return RenderService()
