"""Discovery method registry.

Discovery methods register themselves on import using the ``@register``
decorator.  The registry is a module-level singleton mapping the
``Source.discovery_method`` key to a ``DiscoveryMethod`` subclass, so the
orchestrator dispatches on the source's method without knowing the concrete
classes.

Example -- registering a method::

    from discovery_pipeline.discovery.base import DiscoveryMethod
    from discovery_pipeline.discovery.registry import register

    @register
    class FeedDiscovery(DiscoveryMethod):
        method = "feed"
        ...

Example -- looking up a method::

    from discovery_pipeline.discovery.registry import get_method

    cls = get_method("feed")
    discovery = cls(http_client=client)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from discovery_pipeline.discovery.base import DiscoveryMethod

logger = logging.getLogger(__name__)

# Registry singleton: discovery_method key -> DiscoveryMethod subclass
_REGISTRY: dict[str, type[DiscoveryMethod]] = {}

#: Modules that define the built-in methods.  Imported by :func:`autodiscover`.
_BUILTIN_MODULES: tuple[str, ...] = (
    "discovery_pipeline.discovery.feed",
    "discovery_pipeline.discovery.search_engine",
    "discovery_pipeline.discovery.crawl_map",
)


def register(cls: type[DiscoveryMethod]) -> type[DiscoveryMethod]:
    """Class decorator that registers a discovery method under its ``method`` key.

    Re-registering a key overwrites the previous class and logs a warning.

    Raises:
        AttributeError: If ``cls`` does not define a non-empty ``method``.
    """
    key: str = getattr(cls, "method", "")
    if not key:
        raise AttributeError(f"{cls.__qualname__} must define a 'method' class attribute")

    if key in _REGISTRY and _REGISTRY[key] is not cls:
        logger.warning(
            "Discovery method '%s' re-registered: %s replaces %s",
            key,
            cls.__qualname__,
            _REGISTRY[key].__qualname__,
        )
    _REGISTRY[key] = cls
    logger.debug("Registered discovery method '%s' -> %s", key, cls.__qualname__)
    return cls


def get_method(method: str) -> type[DiscoveryMethod]:
    """Return the class registered for *method*.

    Calls :func:`autodiscover` first so that callers never depend on import
    order.

    Raises:
        KeyError: If no method is registered under that key.
    """
    autodiscover()
    try:
        return _REGISTRY[method]
    except KeyError:
        registered = sorted(_REGISTRY.keys())
        raise KeyError(
            f"No discovery method registered for '{method}'. "
            f"Registered methods: {registered}."
        ) from None


def list_methods() -> list[str]:
    """Return the sorted list of registered method keys."""
    autodiscover()
    return sorted(_REGISTRY.keys())


def autodiscover() -> None:
    """Import the built-in method modules so their ``@register`` calls run.

    Idempotent; Python's module cache makes repeat calls cheap.
    """
    for module_name in _BUILTIN_MODULES:
        importlib.import_module(module_name)
