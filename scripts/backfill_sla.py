#!/usr/bin/env python3
"""
Backfill SLA Tracking
=====================

Seeds the tracking stores from a JSON file of historical ticket snapshots.
No alerts are sent.

Usage:
    python scripts/backfill_sla.py tickets.json [--dry-run]

The file holds either a list of snapshots or an object with a "tickets" list.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from ticket_notifier.config import get_settings
from ticket_notifier.sla.services import backfill, build_components
from ticket_notifier.shared.infrastructure.logging import setup_logging


def load_payloads(path: Path) -> list:
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("tickets", [])
    if not isinstance(data, list):
        raise ValueError("expected a list of ticket snapshots")
    return [item for item in data if isinstance(item, dict)]


async def main(path: Path, dry_run: bool) -> int:
    settings = get_settings()
    setup_logging(settings.log_level, settings.environment, f"{settings.app_name}-backfill")

    payloads = load_payloads(path)
    print(f"Loaded {len(payloads)} snapshots from {path}")
    print(f"Mode: {'DRY RUN (no changes)' if dry_run else 'LIVE'}")

    components = await build_components(settings, enable_alerts=False, watch_policy=False)
    try:
        summary = await backfill(components, payloads, dry_run=dry_run)
    finally:
        await components.close()

    print("Backfill summary:")
    print(f"  Snapshots received: {summary.received}")
    print(f"  Invalid snapshots:  {summary.invalid}")
    print(f"  With SLA:           {summary.with_sla}")
    print(f"  SLAs tracked:       {summary.tracked}")
    print(f"  Errors:             {summary.failed}")
    if dry_run:
        print("DRY RUN - no changes were made")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed SLA tracking from historical ticket snapshots")
    parser.add_argument("snapshots", type=Path, help="JSON file of ticket snapshots")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be tracked")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.snapshots, args.dry_run)))
