"""Metadata enrichment for queue entries.

Sub-modules:
- ``metadata_extractor`` -- pure rule-based ``extract(item)``
- ``service``            -- ``MetadataEnricher``: batch and single-entry enrichment
"""
