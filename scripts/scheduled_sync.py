#!/usr/bin/env python3
"""
Scheduled synchronization script for feedsync.

This script performs incremental synchronization of the configured models:
- Reads each model's watermark from the target database
- Fetches only changed records from the remote feed
- Applies upserts and deletions, then logs run statistics

Designed to be run on a schedule (e.g., via cron or Airflow).

Usage:
    python scripts/scheduled_sync.py [--config CONFIG_PATH] [--model NAME ...]
"""

import argparse
import asyncio
import sys
from datetime import datetime

import structlog

from feedsync.ingestion.feed_client import FeedClient
from feedsync.models.config import AppConfig
from feedsync.storage.sql_target import SqlSyncTarget
from feedsync.sync.errors import FeedSyncError
from feedsync.sync.models import SyncResult
from feedsync.sync.registry import ModelRegistry
from feedsync.sync.sync_coordinator import SyncCoordinator
from feedsync.utils.config_loader import ConfigLoader
from feedsync.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def run_models(
    coordinator: SyncCoordinator,
    target: SqlSyncTarget,
    config: AppConfig,
    model_names: list[str],
) -> list[SyncResult | Exception]:
    """Synchronize models sequentially or concurrently, per configuration."""
    if config.sync.concurrent_models:
        return asyncio.run(
            coordinator.synchronize_many_async(
                model_names, target, fields_by_model=config.sync.fields
            )
        )

    outcomes: list[SyncResult | Exception] = []
    for name in model_names:
        try:
            outcomes.append(
                coordinator.synchronize(name, target, fields=config.sync.fields.get(name, ()))
            )
        except FeedSyncError as e:
            outcomes.append(e)
    return outcomes


def perform_sync(config_path: str | None = None, models: list[str] | None = None) -> dict:
    """
    Perform synchronization of the selected models.

    Args:
        config_path: Optional path to configuration file
        models: Model names to synchronize; None synchronizes every configured model

    Returns:
        Dictionary with sync statistics
    """
    start_time = datetime.now()

    try:
        # Load configuration and logging
        config_loader = ConfigLoader()
        config = config_loader.load_config(config_path)
        configure_logging_from_config(config.logging)
        config_loader.validate_config(config)

        registry: ModelRegistry = config_loader.build_registry(config)
        model_names = models or registry.names()
        # Unknown model names fail before anything is fetched
        for name in model_names:
            registry.get(name)

        log.info("scheduled_sync_started", models=model_names, timestamp=start_time.isoformat())

        # Wire feed, target and coordinator
        feed_client = FeedClient(
            base_url=str(config.feed.base_url),
            auth_token=config.feed.auth_token,
            timeout_seconds=config.feed.timeout_seconds,
            max_retries=config.feed.max_retries,
        )
        target = SqlSyncTarget(database_url=config.target.database_url)
        coordinator = SyncCoordinator(feed_client, registry)

        # Run the models
        try:
            outcomes = run_models(coordinator, target, config, model_names)
        finally:
            feed_client.close()

    except FeedSyncError as e:
        duration = (datetime.now() - start_time).total_seconds()
        log.error("scheduled_sync_failed", error=str(e), duration_seconds=duration)
        return {"success": False, "error": str(e), "duration_seconds": duration, "results": []}

    end_time = datetime.now()
    duration = (end_time - start_time).total_seconds()

    # Per-model statistics
    results = []
    for name, outcome in zip(model_names, outcomes):
        if isinstance(outcome, SyncResult):
            results.append(
                {
                    "success": True,
                    "total_changes": outcome.total_changes,
                    **outcome.model_dump(mode="json"),
                }
            )
        else:
            results.append({"success": False, "model_type": name, "error": str(outcome)})

    stats = {
        "success": all(r["success"] for r in results),
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": duration,
        "results": results,
    }

    log.info(
        "scheduled_sync_completed",
        success=stats["success"],
        models=len(results),
        failed=sum(1 for r in results if not r["success"]),
        duration_seconds=duration,
    )
    return stats


def main():
    """Main entry point for scheduled sync script."""
    parser = argparse.ArgumentParser(description="Scheduled synchronization for feedsync")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--model",
        action="append",
        dest="models",
        help="Model to synchronize (repeatable; default: all configured models)",
        default=None,
    )

    args = parser.parse_args()

    stats = perform_sync(config_path=args.config, models=args.models)

    # Summary table
    print("\n" + "=" * 72)
    print("SYNCHRONIZATION SUMMARY")
    print("=" * 72)

    if stats.get("error"):
        print("Status: FAILED")
        print(f"Error: {stats['error']}")
    else:
        print(f"{'Model':<20}{'Mode':<8}{'Read':>8}{'Upserted':>10}{'Del.read':>10}{'Deleted':>9}")
        for result in stats["results"]:
            if result["success"]:
                print(
                    f"{result['model_type']:<20}{result['endpoint_mode']:<8}"
                    f"{result['records_read']:>8}{result['records_upserted']:>10}"
                    f"{result['deletions_read']:>10}{result['deletions_applied']:>9}"
                )
            else:
                print(f"{result['model_type']:<20}FAILED: {result['error']}")

    print(f"Duration: {stats.get('duration_seconds', 0):.2f} seconds")
    print("=" * 72)

    sys.exit(0 if stats.get("success") else 1)


if __name__ == "__main__":
    main()
