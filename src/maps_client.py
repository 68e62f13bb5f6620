"""
Google Maps Directions API client
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

import requests

from src.models import TRAFFIC_MODELS

logger = logging.getLogger(__name__)

DIRECTIONS_API_URL = "https://maps.googleapis.com/maps/api/directions/json"

# API statuses worth trying again later
RETRYABLE_STATUSES = ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR")


class MapsApiError(Exception):
    """A failed directions request (HTTP, API status or malformed response)"""

    def __init__(self, message: str, status: str, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


@dataclass(frozen=True)
class DirectionsResult:
    duration_seconds: int
    duration_in_traffic_seconds: int
    distance_meters: Optional[int]
    route_summary: Optional[str]


def to_departure_time(departure_time: Union[str, datetime]) -> str:
    """'now' or a naive-UTC datetime as the API's unix-seconds parameter"""
    if isinstance(departure_time, datetime):
        if departure_time.tzinfo is None:
            departure_time = departure_time.replace(tzinfo=timezone.utc)
        return str(int(departure_time.timestamp()))
    return departure_time


class MapsClient:
    def __init__(self, api_key: str, session: requests.Session = None, timeout: int = 10):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_directions(
        self,
        origin: str,
        destination: str,
        departure_time: Union[str, datetime] = "now",
        traffic_model: Optional[str] = None,
    ) -> DirectionsResult:
        """
        Fetch the driving time between two addresses

        Args:
            origin: Origin address
            destination: Destination address
            departure_time: "now" or a future departure (naive UTC datetime)
            traffic_model: best_guess, pessimistic or optimistic (API default if None)

        Returns:
            DirectionsResult for the first leg of the first route

        Raises:
            MapsApiError: on HTTP errors, a non-OK API status, or a response
                without routes / legs
        """
        params = {
            "origin": origin,
            "destination": destination,
            "departure_time": to_departure_time(departure_time),
            "key": self.api_key,
        }
        if traffic_model:
            if traffic_model not in TRAFFIC_MODELS:
                raise ValueError(f"Unknown traffic model: {traffic_model}")
            params["traffic_model"] = traffic_model

        logger.debug("Directions request %s -> %s (%s)", origin, destination, params["departure_time"])
        try:
            response = self.session.get(DIRECTIONS_API_URL, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise MapsApiError(f"Timeout after {self.timeout} seconds", "TIMEOUT", True)
        except requests.exceptions.RequestException as e:
            raise MapsApiError(f"Network error: {e}", "NETWORK_ERROR", True)

        if response.status_code != 200:
            raise MapsApiError(
                f"HTTP error: {response.status_code} {response.reason}",
                "HTTP_ERROR",
                response.status_code >= 500 or response.status_code == 429,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MapsApiError(f"Invalid JSON response: {e}", "INVALID_RESPONSE", False)
        return parse_directions_response(data)


def parse_directions_response(data: dict) -> DirectionsResult:
    """
    Interpret a directions API payload

    Raises:
        MapsApiError: non-OK status, no routes / legs, or a leg without a usable
            duration (INVALID_RESPONSE)
    """
    if not isinstance(data, dict):
        raise MapsApiError("Response body is not a JSON object", "INVALID_RESPONSE", False)

    status = data.get("status")
    if status != "OK":
        raise MapsApiError(
            data.get("error_message") or f"API returned status: {status}",
            status or "UNKNOWN",
            status in RETRYABLE_STATUSES,
        )

    routes = data.get("routes") or []
    if not routes:
        raise MapsApiError("No routes returned", "NO_ROUTES", False)

    route = routes[0]
    legs = route.get("legs") or []
    if not legs:
        raise MapsApiError("No legs in route", "NO_LEGS", False)

    leg = legs[0]
    try:
        duration = leg["duration"]["value"]
        # duration_in_traffic is only present when a departure time is given
        in_traffic = leg.get("duration_in_traffic", {}).get("value", duration)
    except (KeyError, TypeError, AttributeError) as e:
        raise MapsApiError(f"Malformed leg in response: {e!r}", "INVALID_RESPONSE", False)

    if not isinstance(duration, int) or not isinstance(in_traffic, int):
        raise MapsApiError("Leg durations are not integers", "INVALID_RESPONSE", False)

    return DirectionsResult(
        duration_seconds=duration,
        duration_in_traffic_seconds=in_traffic,
        distance_meters=leg.get("distance", {}).get("value"),
        route_summary=route.get("summary"),
    )
