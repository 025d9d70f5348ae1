"""Source discovery: turn catalogued sources into pending queue entries.

Sub-modules:
- ``base``           -- ``DiscoveryMethod`` ABC and the ``Candidate`` record
- ``registry``       -- ``@register`` decorator and method lookup
- ``feed``           -- RSS / Atom feeds
- ``search_engine``  -- paginated search API queries under a daily quota
- ``crawl_map``      -- crawling-service map or XML sitemaps
- ``orchestrator``   -- shared run loop: batching, dedup, run records, source health
- ``url_heuristics`` -- URL canonicalisation, article detection, URL dates and titles
- ``quota``          -- Redis daily request counter
- ``config``         -- constants and tuning parameters
"""
