"""
Prediction Reconciliation Pipeline

Links predictions whose departure time has passed to the closest actual measurement
(within 30 minutes). Safe to re-run: already-linked predictions are never touched.
Run hourly, after collection.

Usage:
    python -m pipelines.reconcile_predictions [--route ROUTE_ID]
"""

import argparse
import logging

from src.config import get_active_routes, get_route_by_id, load_routes
from src.database import get_session
from src.predictions import reconcile


def reconcile_all(route_filter: str = None) -> int:
    routes = load_routes()
    if route_filter:
        route = get_route_by_id(routes, route_filter)
        if route is None:
            print(f"Error: Route {route_filter} not found")
            return 0
        routes = [route]
    else:
        routes = get_active_routes(routes)

    db = get_session()
    total = 0
    try:
        for route in routes:
            linked = reconcile(db, route.id)
            total += linked
            print(f"  {route.id}: linked {linked} predictions")
    finally:
        db.close()

    print(f"✓ Linked {total} predictions across {len(routes)} route(s)")
    return total


def main():
    parser = argparse.ArgumentParser(description="Link predictions to actual measurements")
    parser.add_argument("--route", type=str, help="Specific route to reconcile (default: all)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    reconcile_all(route_filter=args.route)


if __name__ == "__main__":
    main()
