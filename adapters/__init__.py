"""
Platform Adapters
Discovery of installed platform adapter plugins from their metadata.
"""

from .registry import AdapterMeta, discover_adapters, platforms_for

__all__ = [
    "AdapterMeta",
    "discover_adapters",
    "platforms_for",
]
