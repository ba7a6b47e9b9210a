#!/usr/bin/env python3
"""
Command-line entry point
========================
Harvests every configured service (or a single one) into its dataset.

Run with::

    python -m harvester                  # every service with a type
    python -m harvester 42               # only service_id 42
    python -m harvester 42 --window 4 --headed --verbose
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .dataset import Dataset, dataset_name_for
from .engine import HarvestEngine
from .errors import ConfigurationError
from .run_config import HarvestRunConfig, load_services

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="harvester",
        description="Harvest API reference documentation into per-service datasets.",
    )
    parser.add_argument("service_id", nargs="?", default=None,
                        help="Only harvest the service with this id")
    parser.add_argument("--services", default=None,
                        help="Path to the services JSON file (default: services.json)")
    parser.add_argument("--storage-dir", dest="storage_dir", default=None,
                        help="Directory that receives the datasets")
    parser.add_argument("--window", type=int, default=None,
                        help="Scroll cycles without new records before the last pass")
    parser.add_argument("--step-multiplier", dest="step_multiplier", type=float, default=None,
                        help="Scroll step as a multiple of the viewport height (1.0-1.2)")
    parser.add_argument("--concurrency", type=int, default=None,
                        help="Pages harvested in parallel")
    parser.add_argument("--headed", action="store_true",
                        help="Show the browser window")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    env_path = Path.cwd() / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S',
    )

    try:
        config = HarvestRunConfig.from_cli_args(args)
        config.log_summary()
        sites = load_services(config.services_path, args.service_id)
    except (ConfigurationError, OSError) as e:
        logger.error(f"Cannot start harvest: {e}")
        return 2

    if not sites:
        logger.warning("No services to harvest")
        return 1

    failed_pages = 0
    for site in sites:
        logger.info(f"Harvesting {site.name or site.url}")
        dataset = Dataset.open(dataset_name_for(site), config.storage_dir)
        result = HarvestEngine(site, config, dataset).run()
        failed_pages += len(result.errors)
        logger.info(
            f"[DONE] {site.name}: {len(result.pages)} pages, "
            f"{result.record_count} records → {dataset.path}"
        )

    return 1 if failed_pages else 0


if __name__ == "__main__":
    sys.exit(main())
