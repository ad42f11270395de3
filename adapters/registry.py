"""
Adapter Registry - discovers installed platform adapter plugins.

Each sub-directory of the plugin root is a candidate. A candidate is an
adapter when its metadata document (plugin.json, plugin.yaml or plugin.yml)
lists "openorbit-adapter" in its keywords, for example:

    name: glassdoor
    version: 1.0.0
    keywords: [openorbit-adapter]
    openorbit-platform: glassdoor.com

Discovery is fail-soft: a broken candidate is skipped, never fatal.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from core.constants import ADAPTER_KEYWORD, ADAPTER_METADATA_FILES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdapterMeta:
    """Metadata of one discovered adapter plugin."""
    name: str
    version: str = "unknown"
    description: Optional[str] = None
    platform: Optional[str] = None  # Hostname the adapter targets

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "version": self.version}
        if self.description is not None:
            data["description"] = self.description
        if self.platform is not None:
            data["platform"] = self.platform
        return data


def _read_metadata(candidate: Path) -> Optional[Dict[str, Any]]:
    """Load the first metadata document found in a candidate directory."""
    for filename in ADAPTER_METADATA_FILES:
        path = candidate / filename
        if not path.is_file():
            continue

        with open(path, encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{path.name} is not a mapping")
        return data

    return None


def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _to_meta(candidate: Path, data: Dict[str, Any]) -> Optional[AdapterMeta]:
    keywords = data.get("keywords")
    if not isinstance(keywords, list) or ADAPTER_KEYWORD not in keywords:
        return None

    platform = _string_or_none(data.get("openorbit-platform")) or _string_or_none(data.get("platform"))
    return AdapterMeta(
        name=_string_or_none(data.get("name")) or candidate.name,
        version=_string_or_none(data.get("version")) or "unknown",
        description=_string_or_none(data.get("description")),
        platform=platform,
    )


def discover_adapters(root: Union[str, Path, None] = None) -> List[AdapterMeta]:
    """
    Scan the plugin root for adapter plugins.

    Args:
        root: Plugin root directory (defaults to config.plugin_root)

    Returns:
        Adapters sorted by directory name. A missing root yields [].
    """
    if root is None:
        from api.config import get_config
        root = get_config().plugin_root

    root = Path(root)
    if not root.is_dir():
        logger.debug(f"[Adapters] Plugin root {root} does not exist")
        return []

    try:
        candidates = sorted(p for p in root.iterdir() if p.is_dir())
    except OSError as e:
        logger.warning(f"[Adapters] Cannot list plugin root {root}: {e}")
        return []

    adapters: List[AdapterMeta] = []
    for candidate in candidates:
        try:
            data = _read_metadata(candidate)
        except (OSError, ValueError, yaml.YAMLError) as e:
            # json.JSONDecodeError is a ValueError
            logger.debug(f"[Adapters] Skipping {candidate.name}: {e}")
            continue

        if data is None:
            logger.debug(f"[Adapters] Skipping {candidate.name}: no metadata file")
            continue

        meta = _to_meta(candidate, data)
        if meta is None:
            logger.debug(f"[Adapters] Skipping {candidate.name}: not an adapter")
            continue

        adapters.append(meta)

    logger.info(f"[Adapters] Discovered {len(adapters)} adapter(s) in {root}")
    return adapters


def platforms_for(adapters: List[AdapterMeta]) -> List[str]:
    """Hostnames declared by the given adapters, in order, without duplicates."""
    seen: List[str] = []
    for adapter in adapters:
        if adapter.platform and adapter.platform not in seen:
            seen.append(adapter.platform)
    return seen
