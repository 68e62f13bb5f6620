"""
Fetch forecast travel times for future departures

Week predictions give a new route an instant weekday/hour heatmap before any
measurements exist. Daily predictions cover the next 24 hours with all three traffic
models, for comparing optimistic / pessimistic bounds against what actually happens.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.config import Route
from src.local_time import local_to_utc, to_local, utcnow
from src.maps_client import MapsApiError, MapsClient
from src.models import TRAFFIC_MODELS
from src.predictions import PredictionResult

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
WEEK_FIRST_HOUR = 6
WEEK_LAST_HOUR = 21  # inclusive
DAILY_HOURS = 24
REQUEST_DELAY_SECONDS = 0.1


def _fetch_slot(
    client: MapsClient,
    route: Route,
    origin: str,
    predicted_for: datetime,
    traffic_model: str,
) -> list[PredictionResult]:
    """Both directions for one departure time; raises MapsApiError if either fails"""
    outbound = client.fetch_directions(
        origin, route.destination, departure_time=predicted_for, traffic_model=traffic_model
    )
    inbound = client.fetch_directions(
        route.destination, origin, departure_time=predicted_for, traffic_model=traffic_model
    )
    return [
        PredictionResult(
            route_id=route.id,
            direction="outbound",
            predicted_for=predicted_for,
            predicted_duration_seconds=outbound.duration_in_traffic_seconds,
            traffic_model=traffic_model,
        ),
        PredictionResult(
            route_id=route.id,
            direction="inbound",
            predicted_for=predicted_for,
            predicted_duration_seconds=inbound.duration_in_traffic_seconds,
            traffic_model=traffic_model,
        ),
    ]


def _collect_slots(
    client: MapsClient,
    route: Route,
    origin: str,
    slots: list[tuple[datetime, str]],
    sleep: Callable[[float], None],
) -> list[PredictionResult]:
    predictions = []
    for predicted_for, traffic_model in slots:
        try:
            predictions.extend(_fetch_slot(client, route, origin, predicted_for, traffic_model))
        except MapsApiError as e:
            # Skip the slot, carry on with the rest
            logger.warning(
                "Failed to fetch %s prediction for %s at %s: %s",
                traffic_model,
                route.id,
                predicted_for.isoformat(),
                e,
            )
            continue
        sleep(REQUEST_DELAY_SECONDS)
    return predictions


def week_slots(timezone: str, now: datetime) -> list[datetime]:
    """
    Departure times (naive UTC) for every hour 06-21 local on the next 7 days

    Day 0 is today in local time; hours that have already passed are left out since
    the API only forecasts future departures.
    """
    today = to_local(now, timezone).date()
    slots = []
    for day_offset in range(WEEK_DAYS):
        day = today + timedelta(days=day_offset)
        for hour in range(WEEK_FIRST_HOUR, WEEK_LAST_HOUR + 1):
            local_dt = datetime(day.year, day.month, day.day, hour)
            predicted_for = local_to_utc(local_dt, timezone)
            if predicted_for > now:
                slots.append(predicted_for)
    return slots


def daily_slots(now: datetime) -> list[datetime]:
    """The next 24 whole hours after now (naive UTC)"""
    top_of_hour = now.replace(minute=0, second=0, microsecond=0)
    return [top_of_hour + timedelta(hours=offset) for offset in range(1, DAILY_HOURS + 1)]


def generate_week_predictions(
    client: MapsClient,
    route: Route,
    origin: str,
    timezone: str,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[PredictionResult]:
    """
    best_guess predictions for both directions across the coming week

    Args:
        client: Directions API client
        route: Route to predict
        origin: Shared origin address
        timezone: Local time zone name
        now: Reference time (naive UTC), defaults to the current time
        sleep: Pacing function, called after each successful slot

    Returns:
        Fetched predictions (not stored)
    """
    now = now or utcnow()
    slots = [(predicted_for, "best_guess") for predicted_for in week_slots(timezone, now)]
    logger.info("Generating week predictions for %s (%d slots)", route.id, len(slots))
    return _collect_slots(client, route, origin, slots, sleep)


def generate_daily_predictions(
    client: MapsClient,
    route: Route,
    origin: str,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[PredictionResult]:
    """Predictions for the next 24 hours with every traffic model, both directions"""
    now = now or utcnow()
    slots = [
        (predicted_for, traffic_model)
        for predicted_for in daily_slots(now)
        for traffic_model in TRAFFIC_MODELS
    ]
    logger.info("Generating daily predictions for %s (%d slots)", route.id, len(slots))
    return _collect_slots(client, route, origin, slots, sleep)
