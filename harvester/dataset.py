"""
Dataset Storage
===============
Append-only JSON dataset, one file per harvested page::

    storage/datasets/<service_id>--<kebab-name>--<type>/000000001.json
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Union

from .run_config import SiteConfig
from .utils import kebab_case

logger = logging.getLogger(__name__)


def dataset_name_for(site: SiteConfig) -> str:
    """Directory name for a site's dataset."""
    service_id = site.service_id or uuid.uuid4().hex
    return f"{service_id}--{kebab_case(site.name)}--{site.page_type.value}"


class Dataset:
    """
    Directory of numbered JSON items.

    Usage::

        dataset = Dataset.open("42--crisp--swagger", "storage/datasets")
        await dataset.push_data(page_harvest.to_dict())
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._count = len(list(self.path.glob('*.json')))

    @classmethod
    def open(cls, name: str, storage_dir: Union[str, Path]) -> "Dataset":
        return cls(Path(storage_dir) / name)

    @property
    def item_count(self) -> int:
        return self._count

    async def push_data(self, item: Dict[str, Any]) -> Path:
        """Write one item and return its file path."""
        async with self._lock:
            self._count += 1
            filepath = self.path / f"{self._count:09d}.json"
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(item, f, indent=2, ensure_ascii=False)
        logger.debug(f"[DATASET] Wrote {filepath}")
        return filepath

    def items(self) -> List[Dict[str, Any]]:
        """All stored items in write order."""
        result = []
        for filepath in sorted(self.path.glob('*.json')):
            with open(filepath, encoding='utf-8') as f:
                result.append(json.load(f))
        return result
