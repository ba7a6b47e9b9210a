"""
Harvest Errors
==============
Exception types raised out of the harvesting core.

Only configuration defects and browser-runtime faults leave a page harvest.
Content-shape problems (missing names, unexpected panel counts) are recorded
as ``ExtractionAnomaly`` entries and logged instead of raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class HarvestError(Exception):
    """Base class for errors raised by the harvester."""

    def __init__(
        self,
        message: str,
        url: str = "",
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.url = url
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.url:
            parts.append(f"URL: {self.url}")
        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class ConfigurationError(HarvestError):
    """A required selector or setting is missing or invalid.

    Fatal for the page being harvested. Retrying cannot fix it, so the
    engine never re-queues a page that failed with this error.
    """


@dataclass
class ExtractionAnomaly:
    """A recoverable content-shape problem seen during extraction."""
    kind: str            # empty-name | panel-count
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}" if self.detail else self.kind
