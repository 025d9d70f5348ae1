"""Configuration package for the discovery pipeline.

Re-exports the settings accessor so that callers can write::

    from discovery_pipeline.config import get_settings
"""

from __future__ import annotations

from discovery_pipeline.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
