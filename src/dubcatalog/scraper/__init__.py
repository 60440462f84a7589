"""Catalog scraper: fetch upstream pages and extract structured data.

Sub-modules:
- ``config``: constants (headers, selectors, known servers)
- ``http_fetcher``: async httpx fetcher with exponential-backoff retry
- ``search_extractor``: catalog entries from search result pages
- ``detail_extractor``: metadata and episode/server map from title pages
- ``service``: the request pipeline (rate limit, cache, fetch, extract)
"""
