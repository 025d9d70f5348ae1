"""Pydantic schemas for invocation requests and responses.

Sub-modules:
    invocations -- DiscoveryRequest, ScrapeRequest, EnrichmentRequest,
                  CleanupRequest and the response envelope helpers
"""

from __future__ import annotations
