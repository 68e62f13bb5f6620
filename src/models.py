from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

DIRECTIONS = ("outbound", "inbound")
TRAFFIC_MODELS = ("best_guess", "pessimistic", "optimistic")


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Measurement(Base):
    """
    One observed trip duration for a route and direction (collected every 15 minutes).

    Rows are append-only: the collector inserts them and nothing updates or deletes them.
    The weekday/hour bucket keys and the holiday flag are stamped from local time once,
    at insertion, and are treated as immutable facts by the analytics layer.
    """

    __tablename__ = "measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(String, nullable=False, index=True)
    direction = Column(String, nullable=False, index=True)  # outbound | inbound

    # Timestamps
    measured_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    measured_at_local = Column(String, nullable=False, index=True)  # YYYY-MM-DDTHH:MM:SS

    # Durations in seconds
    duration_seconds = Column(Integer, nullable=False)  # baseline (no traffic)
    duration_in_traffic_seconds = Column(Integer, nullable=False)

    distance_meters = Column(Integer)
    route_summary = Column(String)  # e.g. "I-95 N"

    # Bucket keys (local time)
    day_of_week = Column(Integer, nullable=False)  # 0=Sun .. 6=Sat
    hour_local = Column(Integer, nullable=False)  # 0-23
    is_holiday = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("direction IN ('outbound', 'inbound')", name="ck_measurement_direction"),
        CheckConstraint("duration_seconds > 0", name="ck_measurement_duration"),
        CheckConstraint("duration_in_traffic_seconds > 0", name="ck_measurement_traffic"),
        CheckConstraint(
            "distance_meters IS NULL OR distance_meters > 0", name="ck_measurement_distance"
        ),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_measurement_day"),
        CheckConstraint("hour_local BETWEEN 0 AND 23", name="ck_measurement_hour"),
        Index(
            "idx_unique_measurement", "measured_at", "direction", "route_id", unique=True
        ),
        Index("idx_measurement_day_hour", "day_of_week", "hour_local"),
    )

    @property
    def minutes(self) -> float:
        return self.duration_in_traffic_seconds / 60.0


class Prediction(Base):
    """
    A forecast travel time for a future departure, from the directions API.

    actual_measurement_id is a lookup link to the measurement closest to predicted_for,
    filled in by reconciliation. It is set at most once and never rewritten.
    """

    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(String, nullable=False)
    direction = Column(String, nullable=False)

    # When the prediction was made
    predicted_at = Column(DateTime, nullable=False)  # naive UTC
    predicted_at_local = Column(String, nullable=False)

    # What departure time the prediction describes
    predicted_for = Column(DateTime, nullable=False)  # naive UTC
    predicted_for_local = Column(String, nullable=False)

    predicted_duration_seconds = Column(Integer, nullable=False)
    traffic_model = Column(String, nullable=False)  # best_guess | pessimistic | optimistic

    # Link to the actual measurement (filled in later)
    actual_measurement_id = Column(Integer, ForeignKey("measurements.id"), index=True)

    # Bucket keys of predicted_for (local time)
    day_of_week = Column(Integer, nullable=False)
    hour_local = Column(Integer, nullable=False)
    is_holiday = Column(Boolean, nullable=False, default=False)

    actual_measurement = relationship("Measurement")

    __table_args__ = (
        CheckConstraint("direction IN ('outbound', 'inbound')", name="ck_prediction_direction"),
        CheckConstraint(
            "traffic_model IN ('best_guess', 'pessimistic', 'optimistic')",
            name="ck_prediction_model",
        ),
        Index("idx_predictions_predicted_for", "predicted_for", "direction", "route_id"),
        Index("idx_predictions_route_time", "route_id", "predicted_for_local"),
        Index("idx_predictions_model", "traffic_model", "direction"),
    )


class CollectionLog(Base):
    """One row per scheduled collection run (feeds the health endpoint)"""

    __tablename__ = "collection_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, default=_utcnow, index=True)
    status = Column(String, nullable=False)  # success | error
    error_message = Column(String)
    api_calls_made = Column(Integer)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'error')", name="ck_collection_status"),
    )
