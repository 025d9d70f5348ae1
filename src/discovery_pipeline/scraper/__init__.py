"""Scrape queue and worker.

Turns ``pending`` queue entries into stored article text.

Sub-modules:
- ``config``             -- constants and tuning parameters
- ``queue``              -- claim / complete / fail / stale sweep on ``queue_entries``
- ``worker``             -- one bounded, concurrent scrape pass (``ScrapeWorker``)
- ``http_fetcher``       -- async httpx page fetcher
- ``content_extractor``  -- trafilatura-based article text extraction
- ``quality``            -- rejects paywalls, listing pages and stubs
- ``cache``              -- Redis content cache keyed by URL
"""
