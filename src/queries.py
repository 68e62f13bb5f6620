"""
Database queries for measurements, predictions and collection health

Every query over measurements goes through apply_filters() so that numbers reported
by different endpoints (sample counts, averages, percentiles) are computed over
exactly the same rows and can be reconciled with each other.
"""

from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional

import pandas as pd
from sqlalchemy import and_, case, func
from sqlalchemy.orm import Query, Session

from src.local_time import utcnow
from src.models import DIRECTIONS, CollectionLog, Measurement, Prediction
from src.rounding import round_half_up


class InvalidFilterError(ValueError):
    """Raised when a FilterSpec is contradictory or names an unknown value"""


@dataclass(frozen=True)
class FilterSpec:
    """Query-time filters applied uniformly to every measurement query"""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    direction: Optional[str] = None
    route_id: Optional[str] = None
    exclude_holidays: bool = False
    weekdays_only: bool = False

    def validate(self) -> "FilterSpec":
        """
        Fail fast on filters that would otherwise silently return nothing

        Returns:
            self, so calls can be chained

        Raises:
            InvalidFilterError: end_date before start_date, or unknown direction
        """
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise InvalidFilterError(
                f"end_date {self.end_date.isoformat()} is before "
                f"start_date {self.start_date.isoformat()}"
            )
        if self.direction is not None and self.direction not in DIRECTIONS:
            raise InvalidFilterError(
                f"Invalid direction '{self.direction}'. Must be one of: {', '.join(DIRECTIONS)}"
            )
        return self

    def to_dict(self) -> dict:
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat() if self.start_date else None
        data["end_date"] = self.end_date.isoformat() if self.end_date else None
        return data


def apply_filters(query: Query, filters: Optional[FilterSpec]) -> Query:
    """
    Translate a FilterSpec into predicates on the measurements table

    Date bounds compare against the local timestamp string and are inclusive
    of the whole end day.
    """
    if filters is None:
        return query

    if filters.start_date:
        query = query.filter(
            Measurement.measured_at_local >= f"{filters.start_date.isoformat()}T00:00:00"
        )
    if filters.end_date:
        query = query.filter(
            Measurement.measured_at_local <= f"{filters.end_date.isoformat()}T23:59:59"
        )
    if filters.direction:
        query = query.filter(Measurement.direction == filters.direction)
    if filters.route_id:
        query = query.filter(Measurement.route_id == filters.route_id)
    if filters.exclude_holidays:
        query = query.filter(Measurement.is_holiday.is_(False))
    if filters.weekdays_only:
        # day_of_week: 0=Sunday .. 6=Saturday
        query = query.filter(Measurement.day_of_week.between(1, 5))

    return query


def fetch_measurements(db: Session, filters: Optional[FilterSpec] = None) -> list[Measurement]:
    """All measurements matching the filters, ordered by measurement time"""
    query = apply_filters(db.query(Measurement), filters)
    return query.order_by(Measurement.measured_at, Measurement.id).all()


def get_total_samples(db: Session, filters: Optional[FilterSpec] = None) -> int:
    return apply_filters(db.query(func.count(Measurement.id)), filters).scalar() or 0


def _avg_minutes(avg_seconds) -> Optional[float]:
    if avg_seconds is None:
        return None
    return round_half_up(float(avg_seconds) / 60.0, 1)


def get_hourly_data(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Average duration per (hour, direction)"""
    query = db.query(
        Measurement.hour_local,
        Measurement.direction,
        func.avg(Measurement.duration_in_traffic_seconds).label("avg_seconds"),
        func.count(Measurement.id).label("sample_count"),
    )
    rows = (
        apply_filters(query, filters)
        .group_by(Measurement.hour_local, Measurement.direction)
        .order_by(Measurement.hour_local, Measurement.direction)
        .all()
    )
    return [
        {
            "hour": row.hour_local,
            "direction": row.direction,
            "avg_minutes": _avg_minutes(row.avg_seconds),
            "sample_count": row.sample_count,
        }
        for row in rows
    ]


def get_day_hour_data(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Average duration per (day_of_week, hour, direction) - the heatmap grid"""
    query = db.query(
        Measurement.day_of_week,
        Measurement.hour_local,
        Measurement.direction,
        func.avg(Measurement.duration_in_traffic_seconds).label("avg_seconds"),
        func.count(Measurement.id).label("sample_count"),
    )
    rows = (
        apply_filters(query, filters)
        .group_by(Measurement.day_of_week, Measurement.hour_local, Measurement.direction)
        .order_by(Measurement.day_of_week, Measurement.hour_local, Measurement.direction)
        .all()
    )
    return [
        {
            "day_of_week": row.day_of_week,
            "hour": row.hour_local,
            "direction": row.direction,
            "avg_minutes": _avg_minutes(row.avg_seconds),
            "sample_count": row.sample_count,
        }
        for row in rows
    ]


def _interval_frame(db: Session, filters: Optional[FilterSpec]) -> pd.DataFrame:
    """Load the columns needed for sub-hour bucketing into a DataFrame"""
    query = db.query(
        Measurement.day_of_week,
        Measurement.hour_local,
        Measurement.measured_at_local,
        Measurement.direction,
        Measurement.duration_in_traffic_seconds,
    )
    rows = apply_filters(query, filters).all()
    df = pd.DataFrame(
        rows,
        columns=[
            "day_of_week",
            "hour",
            "measured_at_local",
            "direction",
            "duration_in_traffic_seconds",
        ],
    )
    # Minute of the hour from the local timestamp (YYYY-MM-DDTHH:MM:SS)
    df["minute_of_hour"] = df["measured_at_local"].str.slice(14, 16).astype(int)
    return df


def _aggregate_intervals(df: pd.DataFrame, keys: list[str], bucket_minutes: int) -> list[dict]:
    if df.empty:
        return []

    df = df.assign(minute=(df["minute_of_hour"] // bucket_minutes) * bucket_minutes)
    grouped = (
        df.groupby(keys + ["minute", "direction"])["duration_in_traffic_seconds"]
        .agg(avg_seconds="mean", sample_count="count")
        .reset_index()
        .sort_values(keys + ["minute", "direction"])
    )

    results = []
    for row in grouped.itertuples(index=False):
        entry = {key: int(getattr(row, key)) for key in keys}
        entry.update(
            {
                "minute": int(row.minute),
                "direction": row.direction,
                "avg_minutes": _avg_minutes(row.avg_seconds),
                "sample_count": int(row.sample_count),
            }
        )
        results.append(entry)
    return results


def get_interval_data(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Average duration per 15-minute slot of the day"""
    return _aggregate_intervals(_interval_frame(db, filters), ["hour"], 15)


def get_day_interval_data(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Average duration per (day_of_week, 30-minute slot)"""
    return _aggregate_intervals(_interval_frame(db, filters), ["day_of_week", "hour"], 30)


def get_route_data(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Average duration per road route taken (route_summary) and direction"""
    avg_seconds = func.avg(Measurement.duration_in_traffic_seconds)
    query = db.query(
        Measurement.route_summary,
        Measurement.direction,
        avg_seconds.label("avg_seconds"),
        func.count(Measurement.id).label("sample_count"),
    )
    rows = (
        apply_filters(query, filters)
        .group_by(Measurement.route_summary, Measurement.direction)
        .order_by(Measurement.direction, avg_seconds)
        .all()
    )
    return [
        {
            "route_summary": row.route_summary,
            "direction": row.direction,
            "avg_minutes": _avg_minutes(row.avg_seconds),
            "sample_count": row.sample_count,
        }
        for row in rows
    ]


def get_recent_trips(
    db: Session, filters: Optional[FilterSpec] = None, limit: int = 20
) -> list[dict]:
    query = apply_filters(db.query(Measurement), filters)
    rows = query.order_by(Measurement.measured_at.desc()).limit(limit).all()
    return [
        {
            "measured_at_local": row.measured_at_local,
            "direction": row.direction,
            "duration_in_traffic_seconds": row.duration_in_traffic_seconds,
            "route_summary": row.route_summary,
        }
        for row in rows
    ]


def get_recent_paired_measurements(
    db: Session, filters: Optional[FilterSpec] = None, limit: int = 6
) -> list[dict]:
    """
    Most recent collection runs with both directions side by side

    Pairs rows that share the same local minute. The direction filter is ignored
    so that both sides of each pair are present.
    """
    if filters is not None:
        filters = replace(filters, direction=None)

    minute_key = func.substr(Measurement.measured_at_local, 1, 16)
    seconds = Measurement.duration_in_traffic_seconds
    query = db.query(
        minute_key.label("measured_at_local"),
        func.max(case((Measurement.direction == "outbound", seconds))).label("outbound_seconds"),
        func.max(case((Measurement.direction == "inbound", seconds))).label("inbound_seconds"),
        func.max(
            case((Measurement.direction == "outbound", Measurement.route_summary))
        ).label("outbound_route"),
        func.max(
            case((Measurement.direction == "inbound", Measurement.route_summary))
        ).label("inbound_route"),
    )
    rows = (
        apply_filters(query, filters)
        .group_by(minute_key)
        .order_by(minute_key.desc())
        .limit(limit)
        .all()
    )
    return [dict(row._mapping) for row in rows]


def get_best_worst_slots(
    db: Session, filters: Optional[FilterSpec] = None, min_samples: int = 5, limit: int = 3
) -> dict:
    """Fastest and slowest (day_of_week, hour, direction) slots with enough samples"""
    avg_seconds = func.avg(Measurement.duration_in_traffic_seconds)
    base_query = apply_filters(
        db.query(
            Measurement.day_of_week,
            Measurement.hour_local,
            Measurement.direction,
            avg_seconds.label("avg_seconds"),
            func.count(Measurement.id).label("sample_count"),
        ),
        filters,
    )
    base_query = base_query.group_by(
        Measurement.day_of_week, Measurement.hour_local, Measurement.direction
    ).having(func.count(Measurement.id) >= min_samples)

    def to_slots(rows):
        return [
            {
                "day_of_week": row.day_of_week,
                "hour": row.hour_local,
                "direction": row.direction,
                "avg_minutes": _avg_minutes(row.avg_seconds),
                "sample_count": row.sample_count,
            }
            for row in rows
        ]

    best = base_query.order_by(avg_seconds.asc()).limit(limit).all()
    worst = base_query.order_by(avg_seconds.desc()).limit(limit).all()
    return {"best": to_slots(best), "worst": to_slots(worst)}


def get_all_measurements(db: Session, filters: Optional[FilterSpec] = None) -> list[Measurement]:
    """All matching measurements, newest first (CSV export)"""
    return apply_filters(db.query(Measurement), filters).order_by(Measurement.measured_at.desc()).all()


def get_date_range(db: Session) -> dict:
    local_date = func.substr(Measurement.measured_at_local, 1, 10)
    row = db.query(func.min(local_date), func.max(local_date)).one()
    return {"min": row[0], "max": row[1]}


def get_health_status(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Collector health

    Unhealthy when the last successful collection is more than 2 hours old.
    A database that has never collected is reported healthy.
    """
    now = now or utcnow()

    last_success = (
        db.query(CollectionLog.timestamp)
        .filter(CollectionLog.status == "success")
        .order_by(CollectionLog.timestamp.desc())
        .first()
    )
    last_error = (
        db.query(CollectionLog.error_message)
        .filter(CollectionLog.status == "error")
        .order_by(CollectionLog.timestamp.desc())
        .first()
    )
    last_24h_samples = (
        db.query(func.count(Measurement.id))
        .filter(Measurement.measured_at >= now - timedelta(hours=24))
        .scalar()
    )

    last_collection = last_success[0] if last_success else None
    is_healthy = last_collection is None or last_collection > now - timedelta(hours=2)

    return {
        "status": "healthy" if is_healthy else "unhealthy",
        "last_collection": last_collection.isoformat() if last_collection else None,
        "last_24h_samples": last_24h_samples or 0,
        "last_error": last_error[0] if last_error else None,
    }


# ---------------------------------------------------------------------------
# Prediction store
# ---------------------------------------------------------------------------


def fetch_unlinked_predictions(db: Session, route_id: str, now: datetime) -> list[Prediction]:
    """Predictions for a route with no linked measurement whose target time has passed"""
    return (
        db.query(Prediction)
        .filter(
            Prediction.route_id == route_id,
            Prediction.actual_measurement_id.is_(None),
            Prediction.predicted_for < now,
        )
        .order_by(Prediction.predicted_for, Prediction.id)
        .all()
    )


def fetch_measurements_between(
    db: Session, route_id: str, start_time: datetime, end_time: datetime
) -> list[Measurement]:
    """Measurements for a route with measured_at in [start_time, end_time]"""
    return (
        db.query(Measurement)
        .filter(
            Measurement.route_id == route_id,
            Measurement.measured_at >= start_time,
            Measurement.measured_at <= end_time,
        )
        .order_by(Measurement.measured_at, Measurement.id)
        .all()
    )


def fetch_linked_predictions(
    db: Session, route_id: str, traffic_model: str
) -> list[tuple[Prediction, Measurement]]:
    """Linked predictions joined with their actual measurement"""
    return (
        db.query(Prediction, Measurement)
        .join(Measurement, Prediction.actual_measurement_id == Measurement.id)
        .filter(Prediction.route_id == route_id, Prediction.traffic_model == traffic_model)
        .order_by(Prediction.id)
        .all()
    )


def persist_link(db: Session, prediction_id: int, measurement_id: int) -> bool:
    """
    Link a prediction to a measurement unless it is already linked

    Returns:
        True if this call set the link, False if the prediction was already linked
    """
    updated = (
        db.query(Prediction)
        .filter(
            and_(Prediction.id == prediction_id, Prediction.actual_measurement_id.is_(None))
        )
        .update({Prediction.actual_measurement_id: measurement_id}, synchronize_session=False)
    )
    return updated == 1
