"""
Response builders for the dashboard API

These functions combine the query and analytics layers into the JSON / CSV payloads
served by api/main.py. Every float that leaves the API passes through sanitize_float
so NaN and Infinity never reach the JSON encoder.
"""

import csv
import io
import math
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.analytics import get_analytics_report
from src.local_time import utcnow
from src.maps_client import DirectionsResult
from src.models import Measurement
from src.queries import (
    FilterSpec,
    get_all_measurements,
    get_best_worst_slots,
    get_date_range,
    get_day_hour_data,
    get_day_interval_data,
    get_hourly_data,
    get_interval_data,
    get_recent_paired_measurements,
    get_recent_trips,
    get_route_data,
    get_total_samples,
)
from src.rounding import round_half_up

CSV_COLUMNS = [
    "id",
    "route_id",
    "measured_at",
    "measured_at_local",
    "direction",
    "duration_seconds",
    "duration_in_traffic_seconds",
    "distance_meters",
    "route_summary",
    "day_of_week",
    "hour_local",
    "is_holiday",
]


def sanitize_float(value):
    """
    Convert float value to None if it's NaN or Infinity

    Args:
        value: Float value to sanitize

    Returns:
        None if value is NaN/Infinity, otherwise the float value
    """
    if value is None:
        return None
    try:
        float_value = float(value)
        if math.isnan(float_value) or math.isinf(float_value):
            return None
        return float_value
    except (ValueError, TypeError):
        return None


def sanitize(payload):
    """Recursively apply sanitize_float to every float in a dict / list payload"""
    if isinstance(payload, dict):
        return {key: sanitize(value) for key, value in payload.items()}
    if isinstance(payload, list):
        return [sanitize(item) for item in payload]
    if isinstance(payload, float):
        return sanitize_float(payload)
    return payload


def build_meta(db: Session, filters: FilterSpec, generated_at: Optional[datetime] = None) -> dict:
    generated_at = generated_at or utcnow()
    return {
        "generated_at": generated_at.isoformat() + "Z",
        "filters": filters.to_dict(),
        "total_samples": get_total_samples(db, filters),
        "date_range": get_date_range(db),
    }


def build_data_response(db: Session, filters: FilterSpec) -> dict:
    """
    Main dashboard payload

    Returns:
        Dict with meta, hourly, day_hour, by_route, recent, recent_paired and best_worst
    """
    return sanitize(
        {
            "meta": build_meta(db, filters),
            "hourly": get_hourly_data(db, filters),
            "day_hour": get_day_hour_data(db, filters),
            "by_route": get_route_data(db, filters),
            "recent": get_recent_trips(db, filters),
            "recent_paired": get_recent_paired_measurements(db, filters),
            "best_worst": get_best_worst_slots(db, filters),
        }
    )


def build_intervals_response(db: Session, filters: FilterSpec) -> dict:
    """15-minute slots of the day and 30-minute slots per weekday"""
    return sanitize(
        {
            "intervals": get_interval_data(db, filters),
            "day_intervals": get_day_interval_data(db, filters),
        }
    )


def build_analytics_response(db: Session, filters: FilterSpec) -> dict:
    report = get_analytics_report(db, filters)
    report["filters"] = filters.to_dict()
    return sanitize(report)


def measurement_csv_row(measurement: Measurement) -> list:
    return [
        measurement.id,
        measurement.route_id,
        measurement.measured_at.isoformat(),
        measurement.measured_at_local,
        measurement.direction,
        measurement.duration_seconds,
        measurement.duration_in_traffic_seconds,
        measurement.distance_meters if measurement.distance_meters is not None else "",
        measurement.route_summary or "",
        measurement.day_of_week,
        measurement.hour_local,
        int(bool(measurement.is_holiday)),
    ]


def build_csv_export(db: Session, filters: FilterSpec) -> str:
    """All filtered measurements (newest first) as CSV text with a header row"""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for measurement in get_all_measurements(db, filters):
        writer.writerow(measurement_csv_row(measurement))
    return output.getvalue()


def export_filename(today: Optional[datetime] = None) -> str:
    today = today or utcnow()
    return f"traffic-data-{today.date().isoformat()}.csv"


def format_current_estimate(result: DirectionsResult) -> dict:
    return {
        "duration_minutes": int(round_half_up(result.duration_in_traffic_seconds / 60)),
        "route": result.route_summary,
    }
