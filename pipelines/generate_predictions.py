"""
Prediction Generation Pipeline

Fetches forecast travel times and stores them in the predictions table.

Usage:
    python -m pipelines.generate_predictions (--week | --daily) [--route ROUTE_ID]

Options:
    --week            best_guess predictions for hours 06-21 of the next 7 days
                      (gives a new route an instant heatmap)
    --daily           Next 24 hours with all three traffic models
    --route ROUTE_ID  Only this route (default: all active routes)
"""

import argparse
import logging
import time

from src.config import (
    get_active_routes,
    get_api_key,
    get_origin,
    get_route_by_id,
    get_timezone,
    load_routes,
)
from src.database import get_session, init_db
from src.local_time import utcnow
from src.maps_client import MapsClient
from src.prediction_generator import generate_daily_predictions, generate_week_predictions
from src.predictions import store_predictions


def generate_predictions(mode: str, route_filter: str = None):
    """
    Generate and store predictions for every selected route

    Args:
        mode: "week" or "daily"
        route_filter: If specified, only generate for this route id
    """
    print("=" * 70)
    print(f"Prediction Generation Pipeline ({mode})")
    print("=" * 70)

    routes = load_routes()
    if route_filter:
        route = get_route_by_id(routes, route_filter)
        if route is None:
            print(f"Error: Route {route_filter} not found")
            return
        routes = [route]
    else:
        routes = get_active_routes(routes)

    origin = get_origin()
    timezone = get_timezone()
    client = MapsClient(get_api_key())

    init_db()
    db = get_session()

    try:
        total = 0
        for route in routes:
            start = time.time()
            predicted_at = utcnow()
            print(f"\n{route.id} ({route.label})")

            if mode == "week":
                predictions = generate_week_predictions(client, route, origin, timezone, now=predicted_at)
            else:
                predictions = generate_daily_predictions(client, route, origin, now=predicted_at)

            stored = store_predictions(db, predictions, predicted_at, timezone)
            total += stored
            print(f"  ✓ Stored {stored} predictions in {time.time() - start:.2f}s")
    finally:
        db.close()

    print(f"\n{'='*70}")
    print(f"Complete: {total} predictions stored for {len(routes)} route(s)")
    print(f"{'='*70}\n")


def main():
    parser = argparse.ArgumentParser(description="Generate travel-time predictions")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--week", action="store_true", help="Full week heatmap (best_guess)")
    mode.add_argument("--daily", action="store_true", help="Next 24 hours, all traffic models")
    parser.add_argument("--route", type=str, help="Specific route to predict (default: all)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    generate_predictions("week" if args.week else "daily", route_filter=args.route)


if __name__ == "__main__":
    main()
