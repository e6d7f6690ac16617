from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from crawlfusion.backoff import BackoffStrategy
from crawlfusion.config import ConfigManager
from crawlfusion.errors import ConfigValidationError
from crawlfusion.factory import StrategyFactory
from crawlfusion.fusion import DataFusionEngine
from crawlfusion.metrics import MetricsCollector
from crawlfusion.models import Query
from crawlfusion.monitor import PerformanceMonitor
from crawlfusion.orchestrator import FallbackOrchestrator
from crawlfusion.retry import RetryExecutor
from crawlfusion.scheduler import BatchProcessor, BatchRunResult
from crawlfusion.storage import JsonlStorage

logger = logging.getLogger("crawlfusion")

DEFAULT_CONFIG_PATH = "crawl.yaml"
DEFAULT_QUERIES_PATH = "queries.txt"


def load_config_file(path: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Read a YAML file holding a ``crawl`` partial config and ``endpoints`` definitions."""
    config_file = Path(path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to parse YAML configuration: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a mapping")
    crawl = data.get("crawl") or {}
    endpoints = data.get("endpoints") or []
    if not isinstance(crawl, dict) or not isinstance(endpoints, list):
        raise ValueError("'crawl' must be a mapping and 'endpoints' a list")
    return crawl, endpoints


def load_queries(path: str, limit: Optional[int] = None) -> List[Query]:
    """Load queries from JSON Lines ({"name", "address"}) or tab-separated text."""
    queries: List[Query] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("{"):
                item = json.loads(line)
                queries.append(Query(name=str(item["name"]), address=str(item.get("address") or "")))
            else:
                name, _, address = line.partition("\t")
                queries.append(Query(name=name.strip(), address=address.strip()))
            if limit is not None and len(queries) >= limit:
                break
    if not queries:
        raise ValueError(f"No queries found in {path}")
    return queries


def validate_config(config_path: str) -> int:
    partial, _ = load_config_file(config_path)
    result = ConfigManager().validate(partial)
    if result.is_valid:
        print("Configuration is valid.")
        return 0
    print("Configuration is invalid:")
    for error in result.errors:
        print(f"  - {error}")
    return 1


async def run_crawl(
    config: ConfigManager,
    endpoints: List[Dict[str, Any]],
    queries: List[Query],
    results_path: str,
    metrics_path: Optional[str] = None,
    cross_validate: bool = False,
) -> BatchRunResult:
    metrics = MetricsCollector()
    monitor = PerformanceMonitor(config, metrics)
    snapshot = config.get_config()
    retry = RetryExecutor(
        max_retries=snapshot.sources.max_retries,
        backoff=BackoffStrategy.from_config(snapshot),
        monitor=monitor,
    )
    strategies = StrategyFactory().create_all(endpoints)
    orchestrator = FallbackOrchestrator(config, strategies, metrics=metrics, retry=retry)
    processor = BatchProcessor(config, orchestrator, DataFusionEngine(cross_validate=cross_validate), monitor)

    result = await processor.run(queries)

    with JsonlStorage(results_path) as storage:
        for record in result.records:
            storage.write(record)

    print(monitor.generate_performance_report())
    if metrics_path:
        with open(metrics_path, "w", encoding="utf-8") as f:
            f.write(monitor.export_metrics())
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Multi-source crawl with fallback and record fusion")
    parser.add_argument("--run", action="store_true", help="Run a crawl over the query file")
    parser.add_argument("--validate-config", action="store_true", help="Validate the config file and exit")

    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML file with 'crawl' and 'endpoints'")
    parser.add_argument("--queries", default=DEFAULT_QUERIES_PATH, help="Query list (.jsonl or tab-separated text)")
    parser.add_argument("--results", default="results.jsonl", help="Output JSONL file path")
    parser.add_argument("--metrics-out", default=None, help="Write exported metrics JSON to this path")
    parser.add_argument("--limit", type=int, default=None, help="Max number of queries to load")
    parser.add_argument(
        "--cross-validate",
        action="store_true",
        help="Prefer phone, hours, price and facilities that several sources agree on",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: INFO)",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.validate_config:
        return validate_config(args.config)

    if args.run:
        partial, endpoints = load_config_file(args.config)
        if not endpoints:
            print("No endpoints configured; nothing to crawl.")
            return 1
        config = ConfigManager()
        try:
            config.update(partial, strict=True)
        except ConfigValidationError as e:
            print("Configuration is invalid:")
            for error in e.errors:
                print(f"  - {error}")
            return 1
        logger.info("configuration loaded:\n%s", config.summary())
        queries = load_queries(args.queries, limit=args.limit)
        result = asyncio.run(
            run_crawl(config, endpoints, queries, args.results, args.metrics_out, args.cross_validate)
        )
        print(
            f"\nDONE: resolved={len(result.results) - len(result.unresolved)} "
            f"unresolved={len(result.unresolved)} records={len(result.records)}"
        )
        return 0

    print("Nothing to do. Use --run to crawl or --validate-config to check a config file.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
