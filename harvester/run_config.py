"""
Unified Run Configuration
=========================
Single source of truth for harvester defaults, per-site configuration and
the services file that lists target documentation sites.

Every module (CLI, engine, orchestrator, scroll controller) reads from these
objects.  Per-site values come from the services JSON; run-wide tunables come
from ``HarvestRunConfig`` (defaults → environment → CLI flags).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "scroll_step_multiplier": 1.2,     # step = viewport height × k, k ∈ [1.0, 1.2]
    "stability_window": 10,            # cycles without new keys before forcing the last pass
    "max_scroll_cycles": 500,          # hard bound on scroll cycles per page
    "settle_timeout_ms": 12000,        # networkidle wait before harvesting
    "accordion_settle_timeout_ms": 5000,
    "click_timeout_ms": 5000,
    "navigation_timeout_ms": 60000,
    "max_concurrency": 3,
    "single_page_handler_timeout_s": 780,   # long single-page references
    "individual_page_handler_timeout_s": 120,
    "headless": True,
    "storage_dir": "storage/datasets",
    "services_path": "services.json",
}

_MIN_STEP_MULTIPLIER = 1.0
_MAX_STEP_MULTIPLIER = 1.2


class PageType(str, Enum):
    """Structural layout of a documentation site.

    Values are the identifiers used in the services file.
    """
    FLAT = "singlePage"
    SECTIONED = "singlePageSections"
    INDIVIDUAL_PAGES = "individualPages"
    ACCORDION = "swagger"

    @classmethod
    def parse(cls, value: str) -> "PageType":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Unknown page type '{value}'",
                context={"allowed": allowed},
            ) from None


@dataclass(frozen=True)
class SelectorConfig:
    """CSS selectors for one site.  Immutable for the duration of a harvest."""
    delimiter: Optional[str] = None
    name: Union[str, Tuple[str, ...], None] = None
    click: Optional[str] = None
    link: Optional[str] = None

    @property
    def name_candidates(self) -> Tuple[str, ...]:
        """Ordered name selectors; the first one that matches wins."""
        if not self.name:
            return ()
        if isinstance(self.name, str):
            return (self.name,)
        return tuple(self.name)

    @property
    def has_sections(self) -> bool:
        return bool(self.delimiter and self.name_candidates)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SelectorConfig":
        data = data or {}
        name = data.get("name")
        if isinstance(name, list):
            name = tuple(name)
        return cls(
            delimiter=data.get("delimiter") or None,
            name=name or None,
            click=data.get("click") or None,
            link=data.get("link") or None,
        )


@dataclass
class SiteConfig:
    """One target site from the services file."""
    url: str
    page_type: PageType
    selectors: SelectorConfig = field(default_factory=SelectorConfig)
    link_globs: List[str] = field(default_factory=list)
    exclude_globs: List[str] = field(default_factory=list)
    render_timeout_ms: Optional[int] = None   # extra fixed wait after settle
    service_id: Optional[str] = None
    name: str = ""

    @classmethod
    def from_service(cls, entry: Dict[str, Any]) -> "SiteConfig":
        """Build from a services-file entry."""
        url = entry.get("reference_url") or entry.get("url")
        if not url:
            raise ConfigurationError(
                "Service entry has no reference_url",
                context={"service": entry.get("name", "?")},
            )
        service_id = entry.get("service_id")
        return cls(
            url=url,
            page_type=PageType.parse(entry["type"]),
            selectors=SelectorConfig.from_dict(entry.get("selectors")),
            link_globs=list(entry.get("globs") or []),
            exclude_globs=list(entry.get("globs_exclude") or []),
            render_timeout_ms=entry.get("timeout"),
            service_id=str(service_id) if service_id is not None else None,
            name=entry.get("name", ""),
        )


def load_services(
    path: Union[str, Path],
    service_id: Optional[str] = None,
) -> List[SiteConfig]:
    """Read the services file and return the sites to harvest.

    Entries without a ``type`` are not harvestable and are skipped.
    When ``service_id`` is given only the matching entry is returned.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        entries = json.load(f)

    if not isinstance(entries, list):
        raise ConfigurationError(
            "Services file must contain a JSON list",
            context={"path": str(path)},
        )

    sites: List[SiteConfig] = []
    for entry in entries:
        if not entry.get("type"):
            logger.debug(f"[CONFIG] Skipping '{entry.get('name', '?')}' — no type")
            continue
        if service_id is not None and str(entry.get("service_id")) != str(service_id):
            continue
        sites.append(SiteConfig.from_service(entry))

    logger.info(f"[CONFIG] Loaded {len(sites)} services from {path}")
    return sites


@dataclass
class HarvestRunConfig:
    """
    Run-wide configuration consumed by every harvester subsystem.

    Populate via:
      - ``HarvestRunConfig()``                  → all defaults
      - ``HarvestRunConfig(stability_window=2)`` → override one value
      - ``HarvestRunConfig.from_cli_args(ns)``   → from argparse Namespace
    """

    # ---- Scroll convergence ----
    scroll_step_multiplier: float = _DEFAULTS["scroll_step_multiplier"]
    stability_window: int = _DEFAULTS["stability_window"]
    max_scroll_cycles: int = _DEFAULTS["max_scroll_cycles"]

    # ---- Waits ----
    settle_timeout_ms: int = _DEFAULTS["settle_timeout_ms"]
    accordion_settle_timeout_ms: int = _DEFAULTS["accordion_settle_timeout_ms"]
    click_timeout_ms: int = _DEFAULTS["click_timeout_ms"]
    navigation_timeout_ms: int = _DEFAULTS["navigation_timeout_ms"]

    # ---- Engine ----
    max_concurrency: int = _DEFAULTS["max_concurrency"]
    single_page_handler_timeout_s: int = _DEFAULTS["single_page_handler_timeout_s"]
    individual_page_handler_timeout_s: int = _DEFAULTS["individual_page_handler_timeout_s"]
    headless: bool = _DEFAULTS["headless"]

    # ---- Storage ----
    storage_dir: str = field(
        default_factory=lambda: os.environ.get(
            "HARVESTER_STORAGE_DIR", _DEFAULTS["storage_dir"]
        )
    )
    services_path: str = field(
        default_factory=lambda: os.environ.get(
            "HARVESTER_SERVICES", _DEFAULTS["services_path"]
        )
    )

    def __post_init__(self) -> None:
        if not _MIN_STEP_MULTIPLIER <= self.scroll_step_multiplier <= _MAX_STEP_MULTIPLIER:
            raise ConfigurationError(
                "scroll_step_multiplier out of range",
                context={
                    "value": self.scroll_step_multiplier,
                    "allowed": f"[{_MIN_STEP_MULTIPLIER}, {_MAX_STEP_MULTIPLIER}]",
                },
            )
        if self.stability_window < 1:
            raise ConfigurationError(
                "stability_window must be at least 1",
                context={"value": self.stability_window},
            )
        if self.max_concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be at least 1",
                context={"value": self.max_concurrency},
            )
        if self.max_scroll_cycles < 1:
            raise ConfigurationError(
                "max_scroll_cycles must be at least 1",
                context={"value": self.max_scroll_cycles},
            )

    def handler_timeout_s(self, page_type: PageType) -> int:
        """Per-page handler budget.  Single-page references can be very long."""
        if page_type is PageType.INDIVIDUAL_PAGES:
            return self.individual_page_handler_timeout_s
        return self.single_page_handler_timeout_s

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "HarvestRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        def _arg(name: str, key: str):
            value = getattr(args, name, None)
            return _DEFAULTS[key] if value is None else value

        cfg = cls(
            scroll_step_multiplier=_arg("step_multiplier", "scroll_step_multiplier"),
            stability_window=_arg("window", "stability_window"),
            max_concurrency=_arg("concurrency", "max_concurrency"),
            headless=not getattr(args, "headed", False),
        )
        if getattr(args, "storage_dir", None):
            cfg.storage_dir = args.storage_dir
        if getattr(args, "services", None):
            cfg.services_path = args.services
        return cfg

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("HARVEST RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Services:         {self.services_path}")
        logger.info(f"  Storage:          {self.storage_dir}")
        logger.info(f"  Step Multiplier:  {self.scroll_step_multiplier}")
        logger.info(f"  Stability Window: {self.stability_window} cycles")
        logger.info(f"  Max Cycles:       {self.max_scroll_cycles}")
        logger.info(f"  Settle Timeout:   {self.settle_timeout_ms}ms")
        logger.info(f"  Concurrency:      {self.max_concurrency}")
        logger.info(f"  Headless:         {self.headless}")
        logger.info("=" * 60)
