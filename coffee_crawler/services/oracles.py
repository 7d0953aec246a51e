"""
AI extraction services ("oracles").

All oracles talk to an OpenAI-compatible chat completions endpoint through
ChatCompletionClient. Two implementations share the ExtractionOracle
interface and are chosen by the crawl pipeline:

- BulkExtractionOracle (Perplexity): brand + URL list -> many records, one call
- PageExtractionOracle (OpenAI): rendered page text -> one record

Two helpers use the same client:

- UrlFilterOracle: narrows sitemap URLs to coffee bean products
- CoordinateOracle: address -> {lat, lon} fallback for geocoding

Transient failures (timeout, connection error, non-2xx, malformed JSON) raise
OracleError; retrying is the caller's job.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from django.conf import settings

from coffee_crawler.services.types import ExtractedRecord

logger = logging.getLogger(__name__)

# Bulk requests beyond this many URLs overflow the model's output budget
DEFAULT_BULK_URL_LIMIT = 15

# Page text sent to the single-page oracle is truncated to this many chars
MAX_PAGE_TEXT_CHARS = 10000

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class OracleError(Exception):
    """Transient failure calling or parsing an extraction service."""

    pass


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (``` or ```json)."""
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_json_content(text: str) -> Any:
    """
    Parse model output as JSON.

    Accepts bare JSON, fenced JSON, or a full chat completion envelope
    (in which case the first choice's message content is parsed).

    Raises:
        OracleError: If the content is not valid JSON
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        raise OracleError(f"Invalid JSON from model: {e}") from e

    if isinstance(data, dict) and data.get("choices"):
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise OracleError(f"Malformed completion envelope: {e}") from e
        return parse_json_content(content)

    return data


class ChatCompletionClient:
    """
    Synchronous client for an OpenAI-compatible chat completions API.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        system_prompt: str,
        timeout: float = 60.0,
        temperature: float = 0.1,
        max_tokens: int = 4000,
        provider: str = "chat",
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.provider = provider

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        return headers

    def complete(self, prompt: str, **extra: Any) -> str:
        """
        Send one user prompt and return the first choice's message content.

        Args:
            prompt: User message
            **extra: Additional request body fields (e.g. search_domain_filter)

        Returns:
            Message content string

        Raises:
            OracleError: On timeout, connection failure, HTTP error or bad body
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            **extra,
        }

        logger.debug(
            f"Calling {self.provider} API: model={self.model}, "
            f"prompt length={len(prompt)} chars"
        )

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self.api_url,
                    json=payload,
                    headers=self._get_headers(),
                )
                response.raise_for_status()

        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} API timeout: {e}")
            raise OracleError(f"Request timeout after {self.timeout}s") from e

        except httpx.ConnectError as e:
            logger.error(f"{self.provider} API connection error: {e}")
            raise OracleError(f"Connection error: {e}") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"{self.provider} API HTTP error: {e}")
            raise OracleError(
                f"HTTP error {e.response.status_code}: {e.response.text[:200]}"
            ) from e

        except httpx.HTTPError as e:
            logger.error(f"{self.provider} API transport error: {e}")
            raise OracleError(f"Transport error: {e}") from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Failed to parse {self.provider} response: {e}")
            raise OracleError(f"Invalid response body: {e}") from e

        if not content:
            raise OracleError(f"Empty content from {self.provider}")

        return content


def get_perplexity_client() -> ChatCompletionClient:
    return ChatCompletionClient(
        api_url=getattr(settings, "PERPLEXITY_API_URL", ""),
        api_key=getattr(settings, "PERPLEXITY_API_KEY", ""),
        model=getattr(settings, "PERPLEXITY_MODEL", "sonar-pro"),
        system_prompt=(
            "You are a data extraction assistant. Extract structured JSON data "
            "from coffee product descriptions. Always return valid JSON only."
        ),
        timeout=120.0,
        max_tokens=4000,
        provider="Perplexity",
    )


def get_openai_client() -> ChatCompletionClient:
    return ChatCompletionClient(
        api_url=getattr(settings, "OPENAI_API_URL", ""),
        api_key=getattr(settings, "OPENAI_API_KEY", ""),
        model=getattr(settings, "OPENAI_MODEL", "gpt-4o-mini"),
        system_prompt=(
            "You are a coffee product data extraction assistant. Extract "
            "structured data from product pages and return valid JSON."
        ),
        timeout=60.0,
        max_tokens=1000,
        provider="OpenAI",
    )


# ============================================================
# Extraction oracles
# ============================================================


@dataclass
class ExtractionJob:
    """
    Input to an extraction oracle.

    Bulk jobs carry urls; page jobs carry text and url.
    """

    brand_name: str
    urls: List[str] = field(default_factory=list)
    text: Optional[str] = None
    url: Optional[str] = None


class ExtractionOracle(ABC):
    """Converts crawl input into structured product records."""

    name = "oracle"

    @abstractmethod
    def extract(self, job: ExtractionJob) -> List[ExtractedRecord]:
        """
        Extract product records.

        Returns:
            Zero or more records; an empty list is the invalid sentinel

        Raises:
            OracleError: On transient failure
        """


BULK_EXTRACTION_PROMPT = """Extract DETAILED coffee product information from {brand_name}. Visit these product URLs:

{urls}

For EACH product (aim for {count}), extract ALL available details and return a JSON array:
[
  {{
    "product_name": "Full product name",
    "product_url": "Exact product page URL",
    "origin": "Country or Blend",
    "region": "Farm/Region/Area",
    "process": "Processing method (Washed/Natural/Honey/Anaerobic/etc.)",
    "producer": "Farm/Producer name",
    "variety": "Coffee variety (Arabica/Bourbon/Geisha/etc.)",
    "altitude": "Altitude in MASL or meters",
    "tasting_notes": ["ALL flavor notes - include taste, sweetness, acidity, mouthfeel, body"],
    "price": 9.95,
    "in_stock": true,
    "raw_description": "Full product description text as shown on page"
  }}
]

EXTRACTION REQUIREMENTS:
- Match each product to its source URL from the list above
- Include ALL tasting notes/flavor descriptors found on the page
- Extract exact altitude/elevation if provided
- Return empty array [] if no products found
"""


class BulkExtractionOracle(ExtractionOracle):
    """
    One-call extraction over a URL list (Perplexity online model).

    Only the first url_limit URLs are sent; the search is restricted to the
    domain of the first URL. The model may silently skip URLs.
    """

    name = "bulk"

    def __init__(
        self,
        client: Optional[ChatCompletionClient] = None,
        url_limit: Optional[int] = None,
    ):
        self.client = client or get_perplexity_client()
        self.url_limit = url_limit or getattr(
            settings, "CRAWLER_BULK_URL_LIMIT", DEFAULT_BULK_URL_LIMIT
        )

    def extract(self, job: ExtractionJob) -> List[ExtractedRecord]:
        if not self.client.is_configured:
            logger.warning("Perplexity API key not configured")
            return []

        if not job.urls:
            logger.warning("No product URLs provided")
            return []

        limited_urls = job.urls[: self.url_limit]
        prompt = BULK_EXTRACTION_PROMPT.format(
            brand_name=job.brand_name,
            urls=", ".join(limited_urls),
            count=len(limited_urls),
        )

        extra: Dict[str, Any] = {
            "return_citations": False,
            "return_images": False,
            "search_recency_filter": "month",
        }
        domain = domain_of(limited_urls[0])
        if domain:
            extra["search_domain_filter"] = [domain]

        logger.info(
            f"Bulk extraction for {job.brand_name}: {len(job.urls)} URLs "
            f"(limited to {len(limited_urls)}), domain filter: {domain}"
        )

        content = self.client.complete(prompt, **extra)
        data = parse_json_content(content)

        if isinstance(data, dict):
            data = data.get("products", [])
        if not isinstance(data, list):
            raise OracleError(f"Expected a JSON array, got {type(data).__name__}")

        records = []
        for item in data:
            try:
                records.append(ExtractedRecord.from_dict(item))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed bulk record: {e}")

        logger.info(
            f"Bulk extraction returned {len(records)} products for {job.brand_name} "
            f"from {len(limited_urls)} URLs"
        )
        return records


PAGE_EXTRACTION_PROMPT = """Extract coffee product data from this product page text.

Brand: {brand_name}
URL: {url}

Page Text:
{text}

Extract and return a JSON object with these fields:
{{
  "product_name": "Full product name (required)",
  "origin": "Country (e.g., Ethiopia, Colombia, Brazil) or null",
  "region": "Farm/Region (e.g., Sidama, Huehuetenango) or null",
  "process": "Processing method (Washed/Natural/Honey/Anaerobic/etc.) or null",
  "producer": "Farm or producer name or null",
  "variety": "Coffee variety (Bourbon/Geisha/Caturra/etc.) or null",
  "altitude": "Altitude (e.g., '1,800 MASL', '2000-2200m') or null",
  "tasting_notes": ["flavor1", "flavor2"] or [],
  "price": 12.50 (number) or null,
  "in_stock": true/false or null,
  "raw_description": "Full product description text"
}}

Extraction rules:
- Extract ALL tasting notes/flavors mentioned
- price: decimal number without currency symbols
- Use null for missing fields, not empty strings
- Return ONLY valid JSON, no markdown code blocks
"""


class PageExtractionOracle(ExtractionOracle):
    """
    Single-page extraction from rendered text (OpenAI).

    Returns one record, or an empty list when the model produced no
    product name.
    """

    name = "page"

    def __init__(self, client: Optional[ChatCompletionClient] = None):
        self.client = client or get_openai_client()

    def extract(self, job: ExtractionJob) -> List[ExtractedRecord]:
        if not self.client.is_configured:
            logger.warning("OpenAI API key not configured")
            return []

        if not job.text:
            logger.warning("Empty text provided for extraction")
            return []

        text = job.text[:MAX_PAGE_TEXT_CHARS]
        logger.info(f"Extracting from text ({len(text)} chars): {job.url}")

        prompt = PAGE_EXTRACTION_PROMPT.format(
            brand_name=job.brand_name,
            url=job.url,
            text=text,
        )
        content = self.client.complete(prompt, response_format={"type": "json_object"})
        data = parse_json_content(content)

        if isinstance(data, list):
            data = data[0] if data else {}

        try:
            record = ExtractedRecord.from_dict(data)
        except (ValueError, TypeError) as e:
            raise OracleError(f"Unexpected extraction payload: {e}") from e

        # The page URL is authoritative, not whatever the model echoed
        record.product_url = job.url

        if not record.is_valid:
            logger.error(f"Extraction returned no product name for: {job.url}")
            return []

        logger.info(
            f"Extracted product: {record.product_name} "
            f"(origin: {record.origin}, notes: {len(record.tasting_notes)})"
        )
        return [record]


# ============================================================
# Helpers built on the same client
# ============================================================


URL_FILTER_PROMPT = """Analyze these product URLs from {brand_name}. Return ONLY a JSON array of numbers for coffee bean/ground coffee products.

INCLUDE (coffee beans to brew):
- URLs with: coffee, beans, blend, origin, espresso, filter, roast, arabica, robusta
- Country names (ethiopia, colombia, brazil, kenya)
EXCLUDE (equipment/accessories):
- URLs with: grinder, machine, kettle, scale, filter-paper, cup, mug, tool, equipment
- Cleaning: urnex, cafiza, pallo, cleaner
- Accessories: acaia, vst, wilfa, hario, kalita
- Gift cards, subscriptions, bundles, merchandise

URLs:
{urls}
OUTPUT FORMAT: [1, 3, 5, 7, 9]
NO explanations. NO markdown. JUST the JSON array of numbers."""


class UrlFilterOracle:
    """Semantic URL filter; never loses URLs on failure."""

    def __init__(self, client: Optional[ChatCompletionClient] = None):
        self.client = client or get_perplexity_client()

    def filter_urls(self, urls: List[str], brand_name: str) -> List[str]:
        """
        Keep only coffee bean product URLs.

        Args:
            urls: Coarse-filtered URLs
            brand_name: Brand context for the prompt

        Returns:
            Selected URLs in original order, or all URLs if filtering fails
        """
        if not urls:
            return urls

        if not self.client.is_configured:
            logger.warning("Perplexity API key not configured, returning all URLs")
            return urls

        numbered = "\n".join(f"{i}. {url}" for i, url in enumerate(urls, start=1))
        prompt = URL_FILTER_PROMPT.format(brand_name=brand_name, urls=numbered)

        try:
            content = self.client.complete(prompt)
            indices = parse_json_content(content)
            if not isinstance(indices, list):
                raise OracleError(f"Expected a JSON array, got {type(indices).__name__}")

            selected = set()
            for value in indices:
                try:
                    index = int(value) - 1
                except (TypeError, ValueError):
                    continue
                if 0 <= index < len(urls):
                    selected.add(index)

        except OracleError as e:
            logger.error(f"Error filtering URLs for {brand_name}: {e}")
            return urls

        filtered = [url for i, url in enumerate(urls) if i in selected]
        logger.info(
            f"Semantic filter kept {len(filtered)} coffee bean URLs "
            f"out of {len(urls)} total URLs"
        )
        return filtered


COORDINATE_PROMPT = """Return ONLY the latitude and longitude coordinates for this address in JSON format.

Address: {address}

Return format (no markdown, no explanations):
{{"lat": 51.4545, "lon": -2.5879}}

Rules:
- Return approximate center coordinates if exact address not found
- Use the most likely location based on postcode/city
- If address is invalid/not found, return the city/region center coordinates"""


class CoordinateOracle:
    """LLM coordinate lookup used when the geocoding API has no answer."""

    def __init__(self, client: Optional[ChatCompletionClient] = None):
        self.client = client or get_openai_client()

    def locate(self, address: str) -> Tuple[float, float]:
        """
        Ask the model for coordinates.

        Returns:
            (lat, lon) as floats; range is not validated here

        Raises:
            OracleError: If the service fails or the reply lacks lat/lon
        """
        if not self.client.is_configured:
            raise OracleError("OpenAI API key not configured")

        content = self.client.complete(
            COORDINATE_PROMPT.format(address=address),
            response_format={"type": "json_object"},
        )
        data = parse_json_content(content)

        try:
            return float(data["lat"]), float(data["lon"])
        except (KeyError, TypeError, ValueError) as e:
            raise OracleError(f"Coordinate reply missing lat/lon: {data!r}") from e


def domain_of(url: str) -> Optional[str]:
    """Host of a URL without a leading www."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host
