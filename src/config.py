"""
Configuration for the traffic tracker

Settings come from environment variables (loaded from a .env file when present).
Route definitions come from either the ROUTES environment variable (a JSON array)
or a YAML file pointed to by ROUTES_FILE.
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Optional

import yaml
from dotenv import load_dotenv

# Load environment variables before reading any settings
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///traffic.db"
DEFAULT_TIMEZONE = "America/New_York"

ROUTE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class ConfigError(ValueError):
    """Raised when required configuration is missing or invalid"""


@dataclass(frozen=True)
class Route:
    """A configured origin -> destination route (the origin is shared by all routes)"""

    id: str
    label: str
    destination: str
    destination_label: Optional[str] = None
    active: bool = True


def get_database_url() -> str:
    return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def get_timezone() -> str:
    return os.getenv("TIMEZONE") or DEFAULT_TIMEZONE


def get_collection_hours() -> tuple[int, int]:
    """Return (start_hour, end_hour) for collection, local time, end exclusive"""
    try:
        start_hour = int(os.getenv("START_HOUR", "6"))
        end_hour = int(os.getenv("END_HOUR", "21"))
    except ValueError as e:
        raise ConfigError(f"START_HOUR and END_HOUR must be integers: {e}")

    if not (0 <= start_hour <= 23 and 1 <= end_hour <= 24 and start_hour < end_hour):
        raise ConfigError(f"Invalid collection hours: {start_hour}-{end_hour}")
    return start_hour, end_hour


def get_origin() -> str:
    origin = os.getenv("ORIGIN")
    if not origin:
        raise ConfigError("ORIGIN not found in environment variables")
    return origin


def get_origin_label() -> str:
    return os.getenv("ORIGIN_LABEL") or "Home"


def get_api_key() -> str:
    api_key = os.getenv("GOOGLE_MAPS_API_KEY")
    if not api_key:
        raise ConfigError("GOOGLE_MAPS_API_KEY not found in environment variables")
    return api_key


def parse_routes(raw_routes) -> list[Route]:
    """
    Validate raw route definitions and convert them to Route objects

    Args:
        raw_routes: List of dicts with keys id, label, destination and optional
            destination_label / active

    Returns:
        List of Route objects, in the order given

    Raises:
        ConfigError: if the list is empty or any route is malformed
    """
    if not isinstance(raw_routes, list) or len(raw_routes) == 0:
        raise ConfigError("ROUTES must be a non-empty array")

    routes = []
    seen_ids = set()
    for raw in raw_routes:
        if not isinstance(raw, dict):
            raise ConfigError("Each route must be an object")
        for key in ("id", "label", "destination"):
            if not raw.get(key) or not isinstance(raw[key], str):
                raise ConfigError(f'Each route must have a string "{key}"')
        if not ROUTE_ID_PATTERN.match(raw["id"]):
            raise ConfigError(
                f'Route id "{raw["id"]}" must be URL-safe '
                "(alphanumeric, hyphens, underscores only)"
            )
        if raw["id"] in seen_ids:
            raise ConfigError(f'Duplicate route id "{raw["id"]}"')
        seen_ids.add(raw["id"])

        routes.append(
            Route(
                id=raw["id"],
                label=raw["label"],
                destination=raw["destination"],
                destination_label=raw.get("destination_label"),
                active=raw.get("active", True) is not False,
            )
        )

    return routes


def parse_routes_json(routes_json: str) -> list[Route]:
    try:
        raw_routes = json.loads(routes_json)
    except json.JSONDecodeError:
        raise ConfigError("ROUTES is not valid JSON")
    return parse_routes(raw_routes)


def load_routes_file(path: str) -> list[Route]:
    """Load routes from a YAML file with a top-level `routes` list"""
    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(config, dict):
        raise ConfigError(f"{path} must contain a mapping with a routes array")
    return parse_routes(config.get("routes"))


def load_routes() -> list[Route]:
    """Load routes from ROUTES (JSON) or ROUTES_FILE (YAML), in that order"""
    routes_json = os.getenv("ROUTES")
    if routes_json:
        return parse_routes_json(routes_json)

    routes_file = os.getenv("ROUTES_FILE")
    if routes_file:
        return load_routes_file(routes_file)

    raise ConfigError("Neither ROUTES nor ROUTES_FILE is set")


def get_route_by_id(routes: list[Route], route_id: str) -> Optional[Route]:
    return next((route for route in routes if route.id == route_id), None)


def get_active_routes(routes: list[Route]) -> list[Route]:
    """Routes are active unless explicitly disabled"""
    return [route for route in routes if route.active]
