"""
Travel-Time Collection Pipeline

Queries the directions API for both directions of every active route and stores the
results. Intended to run every 15 minutes from cron, or continuously with --loop.

Usage:
    python -m pipelines.collect_measurements [--loop] [--interval MINUTES]

Options:
    --loop              Keep running, collecting every --interval minutes
    --interval MINUTES  Minutes between collections in loop mode (default: 15)
"""

import argparse
import logging
import time

from src.collector import TrafficCollector
from src.config import (
    get_api_key,
    get_collection_hours,
    get_origin,
    get_timezone,
    load_routes,
)
from src.database import get_session, init_db
from src.local_time import utcnow
from src.maps_client import MapsClient


def run_collection(client: MapsClient, routes, origin: str, timezone: str, hours) -> None:
    """One collection run with its own database session"""
    db = get_session()
    try:
        collector = TrafficCollector(
            client, db, timezone, start_hour=hours[0], end_hour=hours[1]
        )
        results = collector.collect(routes, origin)

        timestamp = utcnow().strftime("%Y-%m-%d %H:%M:%S")
        if results is None:
            print(f"[{timestamp} UTC] Outside collection hours ({hours[0]}-{hours[1]}), skipped")
            return

        succeeded = sum(1 for r in results if r.success)
        print(f"[{timestamp} UTC] Saved {succeeded}/{len(results)} measurements")
        for r in results:
            if not r.success:
                print(f"  ✗ {r.route_id} {r.direction}: {r.error}")
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Collect travel times for configured routes")
    parser.add_argument("--loop", action="store_true", help="Collect continuously")
    parser.add_argument(
        "--interval", type=int, default=15, help="Minutes between collections (default: 15)"
    )
    args = parser.parse_args()

    if args.interval <= 0:
        parser.error("--interval must be positive")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    routes = load_routes()
    origin = get_origin()
    timezone = get_timezone()
    hours = get_collection_hours()
    client = MapsClient(get_api_key())

    init_db()

    if not args.loop:
        run_collection(client, routes, origin, timezone, hours)
        return

    print("Continuous Travel-Time Collector")
    print("=" * 50)
    print(f"Collecting {len(routes)} route(s) every {args.interval} minutes")
    print("Press Ctrl+C to stop")
    print("=" * 50)

    try:
        while True:
            run_collection(client, routes, origin, timezone, hours)
            time.sleep(args.interval * 60)
    except KeyboardInterrupt:
        print("\n\nStopping continuous collection...")


if __name__ == "__main__":
    main()
