"""
API Reference Harvester
Playwright-driven harvester that turns API documentation sites into
per-endpoint records (readable article + markdown).

CLI Usage:
    python -m harvester [service_id] [options]

    Options:
        --services          Services JSON file (default: services.json)
        --storage-dir       Dataset directory (default: storage/datasets)
        --window            Stability window in scroll cycles (default: 10)
        --step-multiplier   Scroll step / viewport height (default: 1.2)
        --concurrency       Parallel pages (default: 3)
        --headed            Show the browser
        --verbose           Debug logging
"""

from .dataset import Dataset, dataset_name_for
from .dedup import RecordDeduplicator
from .engine import HarvestEngine, HarvestRunResult
from .errors import ConfigurationError, ExtractionAnomaly, HarvestError
from .harvest_model import Article, PageHarvest, RawFragment, Record
from .normalizer import normalize
from .orchestrator import PageHarvester
from .run_config import HarvestRunConfig, PageType, SelectorConfig, SiteConfig, load_services
from .scroll import ScrollConvergenceController, is_stable_for_last_n
from .strategies import Strategy, select_strategy

__all__ = [
    'Dataset',
    'dataset_name_for',
    'RecordDeduplicator',
    'HarvestEngine',
    'HarvestRunResult',
    'ConfigurationError',
    'ExtractionAnomaly',
    'HarvestError',
    'Article',
    'PageHarvest',
    'RawFragment',
    'Record',
    'normalize',
    'PageHarvester',
    # Configuration
    'HarvestRunConfig',
    'PageType',
    'SelectorConfig',
    'SiteConfig',
    'load_services',
    # Scrolling
    'ScrollConvergenceController',
    'is_stable_for_last_n',
    'Strategy',
    'select_strategy',
]

__version__ = '1.0.0'
