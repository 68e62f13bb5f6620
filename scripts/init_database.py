"""
One-time database initialization script
Run this once to create the measurements, predictions and collection_log tables

Usage:
  python -m scripts.init_database              # Interactive mode (prompts for confirmation)
  python -m scripts.init_database --no-confirm # Non-interactive mode (for automation)
"""

import sys

from sqlalchemy import inspect

from src.config import ConfigError, load_routes
from src.database import get_engine, init_db


def main():
    print("=" * 70)
    print("Commute Traffic Tracker - Database Initialization")
    print("=" * 70)

    engine = get_engine()
    print(f"\nDatabase: {engine.url}")
    print("\nThis script will create (if missing):")
    print("  - measurements")
    print("  - predictions")
    print("  - collection_log")
    print("=" * 70)

    # Check for --no-confirm flag
    if "--no-confirm" not in sys.argv:
        response = input("\nContinue? (y/n): ")
        if response.lower() != "y":
            print("Aborted.")
            return
    else:
        print("\n[Running in non-interactive mode]")

    print("\n[1/2] Creating database tables...")
    init_db(engine)
    tables = inspect(engine).get_table_names()
    print(f"✓ Tables present: {', '.join(sorted(tables))}")

    print("\n[2/2] Checking route configuration...")
    try:
        routes = load_routes()
        for route in routes:
            status = "active" if route.active else "inactive"
            print(f"  - {route.id}: {route.label} ({status})")
    except ConfigError as e:
        print(f"✗ {e}")
        print("  Set ROUTES (JSON) or ROUTES_FILE (YAML) before collecting.")

    print("\n" + "=" * 70)
    print("✓ Database initialization complete!")
    print("=" * 70)
    print("\nYou can now run:")
    print("  - python -m pipelines.collect_measurements (one collection run)")
    print("  - python -m pipelines.generate_predictions --week (instant heatmap)")
    print("  - uvicorn api.main:app (serve the API)")


if __name__ == "__main__":
    main()
