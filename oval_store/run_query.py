#!/usr/bin/env python3
"""
Command-line lookups against the OVAL advisory store.

This module wires configuration, the DuckDB database and a family-scoped
store handle together:
1. Load YAML configuration (database path, default family, log level)
2. Open the database and make sure the schema exists
3. Run one lookup (by package name or CVE id) or the integrity checks
4. Print a Markdown report

Usage:
    python run_query.py --os-version 7.2 --package openssl
    python run_query.py --family Debian --os-version 10 --cve CVE-2020-1971
    python run_query.py --check
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from models.dataset import Definition, Family
from observability import QualityChecker, QualityCheckResult, QueryReporter
from storage import AdvisoryStore, Database

logger = logging.getLogger(__name__)


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Read and validate the YAML configuration.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a required key is missing
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if "database" not in config:
        raise ValueError("Missing required config key: database")
    if "path" not in (config["database"] or {}):
        raise ValueError("Missing required config key: database.path")

    return config


class AdvisoryLookup:
    """
    Runs lookups and checks for one configured store.
    """

    def __init__(self, config_path: str = "config.yaml", family: Optional[str] = None):
        """
        Args:
            config_path: Path to YAML configuration file
            family: OS family overriding store.family from the config
        """
        self.config = load_config(config_path)
        family_name = family or (self.config.get("store") or {}).get("family", Family.REDHAT.value)

        self.db = Database(self.config["database"]["path"])
        self.db.initialize_schema()
        self.store = AdvisoryStore(self.db, family_name)
        self.reporter = QueryReporter()

        logger.info(f"Store opened for {self.store.family.value}: {self.db.db_path}")

    def by_package(self, os_version: str, package_name: str) -> List[Definition]:
        definitions = self.store.get_by_package_name(os_version, package_name)
        logger.info(f"{len(definitions)} definitions affect {package_name} on {os_version}")
        return definitions

    def by_cve(self, os_version: str, cve_id: str) -> List[Definition]:
        definitions = self.store.get_by_cve_id(os_version, cve_id)
        logger.info(f"{len(definitions)} definitions reference {cve_id} on {os_version}")
        return definitions

    def check(self) -> List[QualityCheckResult]:
        results = QualityChecker(self.db).run_all_checks()
        failed = [r for r in results if not r.passed]
        if failed:
            logger.warning(f"{len(failed)} integrity checks failed")
        return results

    def close(self):
        self.db.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Look up OVAL advisories by package name or CVE id"
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument("--family", help="OS family (default: store.family from config)")
    parser.add_argument("--os-version", help="OS version, e.g. 7.2")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--package", help="Exact package name")
    target.add_argument("--cve", help="Exact CVE id")
    target.add_argument("--check", action="store_true", help="Run integrity checks")
    args = parser.parse_args(argv)

    if not args.check and not args.os_version:
        parser.error("--os-version is required with --package or --cve")

    try:
        config = load_config(args.config)
        logging.basicConfig(
            level=(config.get("logging") or {}).get("level", "INFO"),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        lookup = AdvisoryLookup(config_path=args.config, family=args.family)
        try:
            if args.check:
                report = lookup.reporter.quality_report(lookup.check())
            elif args.package:
                report = lookup.reporter.lookup_report(
                    f"{lookup.store.family.value} {args.os_version}: {args.package}",
                    lookup.by_package(args.os_version, args.package),
                )
            else:
                report = lookup.reporter.lookup_report(
                    f"{lookup.store.family.value} {args.os_version}: {args.cve}",
                    lookup.by_cve(args.os_version, args.cve),
                )
        finally:
            lookup.close()

        print(report)
        return 0

    except Exception as e:
        logger.error(f"Lookup failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
