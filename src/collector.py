"""
Scheduled travel-time collection

Run every 15 minutes (cron or pipelines/collect_measurements.py --loop). Each run
queries the directions API for both directions of every active route and stores one
Measurement per successful call, then records the run in the collection log.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from src.config import Route, get_active_routes
from src.local_time import stamp_local, to_local, utcnow
from src.maps_client import MapsApiError, MapsClient
from src.models import CollectionLog, Measurement

logger = logging.getLogger(__name__)

# Pause between consecutive API calls
CALL_DELAY_SECONDS = 0.5


@dataclass
class DirectionResult:
    route_id: str
    direction: str
    success: bool
    error: Optional[str] = None


class TrafficCollector:
    def __init__(
        self,
        client: MapsClient,
        db_session: Session,
        timezone: str,
        start_hour: int = 6,
        end_hour: int = 21,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.db = db_session
        self.timezone = timezone
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.sleep = sleep
        self.api_calls_made = 0

    def is_within_collection_hours(self, local_dt: datetime) -> bool:
        return self.start_hour <= local_dt.hour < self.end_hour

    def _collect_direction(
        self, route: Route, direction: str, origin: str, destination: str, now: datetime
    ) -> DirectionResult:
        self.api_calls_made += 1
        try:
            result = self.client.fetch_directions(origin, destination)
        except MapsApiError as e:
            logger.warning("Collection failed for %s %s: %s", route.id, direction, e)
            return DirectionResult(route.id, direction, False, str(e))

        stamp = stamp_local(now, self.timezone)
        self.db.add(
            Measurement(
                route_id=route.id,
                direction=direction,
                measured_at=now,
                measured_at_local=stamp.local_timestamp,
                duration_seconds=result.duration_seconds,
                duration_in_traffic_seconds=result.duration_in_traffic_seconds,
                distance_meters=result.distance_meters,
                route_summary=result.route_summary,
                day_of_week=stamp.day_of_week,
                hour_local=stamp.hour_local,
                is_holiday=stamp.is_holiday,
            )
        )
        return DirectionResult(route.id, direction, True)

    def collect_route(self, route: Route, origin: str, now: datetime) -> list[DirectionResult]:
        """Collect outbound (origin -> destination) then inbound, pausing between calls"""
        results = [
            self._collect_direction(route, "outbound", origin, route.destination, now)
        ]
        self.sleep(CALL_DELAY_SECONDS)
        results.append(
            self._collect_direction(route, "inbound", route.destination, origin, now)
        )
        return results

    def collect(
        self, routes: list[Route], origin: str, now: Optional[datetime] = None
    ) -> Optional[list[DirectionResult]]:
        """
        Run one collection for all active routes

        Args:
            routes: Configured routes (inactive ones are skipped)
            origin: Shared origin address
            now: Measurement time (naive UTC), defaults to the current time

        Returns:
            Per-direction results, or None when outside collection hours
        """
        now = now or utcnow()
        local_now = to_local(now, self.timezone)

        if not self.is_within_collection_hours(local_now):
            logger.info(
                "Outside collection hours (%d-%d), current hour: %d",
                self.start_hour,
                self.end_hour,
                local_now.hour,
            )
            return None

        self.api_calls_made = 0
        results = []
        active_routes = get_active_routes(routes)
        for i, route in enumerate(active_routes):
            if i > 0:
                self.sleep(CALL_DELAY_SECONDS)
            results.extend(self.collect_route(route, origin, now))

        errors = [r for r in results if not r.success]
        status = "error" if errors else "success"
        error_message = "; ".join(f"{r.route_id} {r.direction}: {r.error}" for r in errors) or None

        self.db.add(
            CollectionLog(
                timestamp=now,
                status=status,
                error_message=error_message,
                api_calls_made=self.api_calls_made,
            )
        )
        self.db.commit()

        logger.info(
            "Collection completed: %s (%d API calls, %d errors)",
            status,
            self.api_calls_made,
            len(errors),
        )
        return results
