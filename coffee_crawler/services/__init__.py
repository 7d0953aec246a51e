"""
Services module for the coffee crawler.

Contains:
- content_hash: page fingerprints for change detection
- rate_limiter: dual-window (minute/day) Redis rate limiter
- geocoding: cache-first geocode resolver with LLM fallback
- sitemap_parser / url_discovery: product URL discovery and filtering
- deduplication: roast-variant base product identities
- oracles: bulk and per-page AI extraction
- quality_gate: bulk extraction scoring and fallback decision
- fallback: sequential fail-fast per-page extraction
- chunked_writer: batched persistence
- product_saver: product create/update with error placeholders
- orchestrator: brand, sitemap and product crawl flows
"""
