"""
Traffic predictions: storage, reconciliation against measurements, and accuracy

Predictions are forecasts for a future departure time. Once that time has passed,
reconcile() links each prediction to the measurement of the same route and
direction taken closest to the predicted departure (within MATCH_TOLERANCE).
Accuracy is then computed per (direction, weekday, hour) bucket of the prediction.
"""

import bisect
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.local_time import stamp_local, utcnow
from src.models import Measurement, Prediction
from src.queries import (
    fetch_linked_predictions,
    fetch_measurements_between,
    fetch_unlinked_predictions,
    persist_link,
)
from src.rounding import round_half_up

logger = logging.getLogger(__name__)

MATCH_TOLERANCE = timedelta(minutes=30)


@dataclass
class PredictionResult:
    """A forecast fetched from the directions API, not yet stored"""

    route_id: str
    direction: str
    predicted_for: datetime  # naive UTC
    predicted_duration_seconds: int
    traffic_model: str


class MeasurementIndex:
    """
    Measurements grouped by direction and sorted by measured_at

    Built in a single pass so that each lookup is a binary search instead of
    a scan over every measurement.
    """

    def __init__(self, measurements: Iterable[Measurement]):
        grouped = defaultdict(list)
        for m in measurements:
            grouped[m.direction].append(m)

        self._measurements = {}
        self._times = {}
        for direction, rows in grouped.items():
            rows.sort(key=lambda m: (m.measured_at, m.id or 0))
            self._measurements[direction] = rows
            self._times[direction] = [m.measured_at for m in rows]

    def closest(
        self, direction: str, target: datetime, tolerance: timedelta = MATCH_TOLERANCE
    ) -> Optional[Measurement]:
        rows = self._measurements.get(direction)
        if not rows:
            return None
        return find_closest_measurement(target, rows, tolerance, times=self._times[direction])


def find_closest_measurement(
    target: datetime,
    measurements_sorted: Sequence[Measurement],
    tolerance: timedelta = MATCH_TOLERANCE,
    times: Optional[Sequence[datetime]] = None,
) -> Optional[Measurement]:
    """
    Nearest measurement to target by absolute time distance

    Args:
        target: The predicted departure time (naive UTC)
        measurements_sorted: Candidates sorted by measured_at ascending
        tolerance: Maximum distance; a candidate exactly at the tolerance is eligible
        times: Precomputed measured_at values of measurements_sorted

    Returns:
        The closest measurement, the earlier one on a tie, or None if nothing is
        within tolerance
    """
    if not measurements_sorted:
        return None
    if times is None:
        times = [m.measured_at for m in measurements_sorted]

    pos = bisect.bisect_left(times, target)

    best = None
    best_distance = None
    # Candidates are the neighbours either side of the insertion point; the
    # earlier one is checked first so that it wins ties.
    for i in (pos - 1, pos):
        if 0 <= i < len(measurements_sorted):
            distance = abs(times[i] - target)
            if best_distance is None or distance < best_distance:
                best = measurements_sorted[i]
                best_distance = distance

    if best_distance is None or best_distance > tolerance:
        return None
    return best


def match_predictions(
    predictions: Iterable[Prediction],
    measurements: Iterable[Measurement],
    now: datetime,
    tolerance: timedelta = MATCH_TOLERANCE,
) -> list[tuple[Prediction, Measurement]]:
    """
    Pair each eligible prediction with its closest measurement

    Predictions that are already linked, or whose predicted_for is not strictly
    before now, are skipped. Several predictions (e.g. different traffic models)
    may match the same measurement.
    """
    index = MeasurementIndex(measurements)

    pairs = []
    for prediction in predictions:
        if prediction.actual_measurement_id is not None:
            continue
        if not prediction.predicted_for < now:
            continue
        measurement = index.closest(prediction.direction, prediction.predicted_for, tolerance)
        if measurement is not None:
            pairs.append((prediction, measurement))
    return pairs


def reconcile(db: Session, route_id: str, now: Optional[datetime] = None) -> int:
    """
    Link past, unlinked predictions for a route to their actual measurements

    Each link is written with a guarded update that only touches rows whose link is
    still empty, so repeated or concurrent runs never relink a prediction.
    Predictions with no measurement in range stay unlinked and are retried on the
    next run.

    Args:
        db: Database session (committed on success)
        route_id: Route to reconcile
        now: Reference time (naive UTC); defaults to the current time

    Returns:
        Number of predictions newly linked by this call
    """
    now = now or utcnow()

    predictions = fetch_unlinked_predictions(db, route_id, now)
    if not predictions:
        return 0

    earliest = min(p.predicted_for for p in predictions) - MATCH_TOLERANCE
    latest = max(p.predicted_for for p in predictions) + MATCH_TOLERANCE
    measurements = fetch_measurements_between(db, route_id, earliest, latest)

    linked = 0
    for prediction, measurement in match_predictions(predictions, measurements, now):
        if persist_link(db, prediction.id, measurement.id):
            linked += 1

    db.commit()
    logger.info(
        "Linked %d of %d unlinked predictions for route %s", linked, len(predictions), route_id
    )
    return linked


def _to_minutes(seconds: float) -> float:
    return round_half_up(seconds / 60.0, 1)


def accuracy_rows(pairs: Iterable[tuple[Prediction, Measurement]]) -> list[dict]:
    """
    Accuracy statistics per (direction, day_of_week, hour_local) of the prediction

    Only predictions made in advance (predicted_at < predicted_for) count. Errors are
    accumulated in seconds and converted to minutes at the end. Bias is
    predicted - actual, so a positive bias means the forecast was too slow.

    Returns:
        Rows ordered by day_of_week, hour_local, direction
    """
    groups = defaultdict(list)
    for prediction, measurement in pairs:
        if not prediction.predicted_at < prediction.predicted_for:
            continue
        key = (prediction.day_of_week, prediction.hour_local, prediction.direction)
        groups[key].append(
            (prediction.predicted_duration_seconds, measurement.duration_in_traffic_seconds)
        )

    rows = []
    for (day_of_week, hour_local, direction) in sorted(groups):
        samples = groups[(day_of_week, hour_local, direction)]
        n = len(samples)
        diffs = [predicted - actual for predicted, actual in samples]
        rows.append(
            {
                "direction": direction,
                "day_of_week": day_of_week,
                "hour_local": hour_local,
                "prediction_count": n,
                "avg_predicted_minutes": _to_minutes(sum(p for p, _ in samples) / n),
                "avg_actual_minutes": _to_minutes(sum(a for _, a in samples) / n),
                "avg_error_minutes": _to_minutes(sum(abs(d) for d in diffs) / n),
                "avg_bias_minutes": _to_minutes(sum(diffs) / n),
                "rmse_minutes": _to_minutes(math.sqrt(sum(d * d for d in diffs) / n)),
            }
        )
    return rows


def get_prediction_accuracy(
    db: Session, route_id: str, traffic_model: str = "best_guess"
) -> list[dict]:
    """Accuracy rows for a route's linked predictions of one traffic model"""
    return accuracy_rows(fetch_linked_predictions(db, route_id, traffic_model))


def get_prediction_heatmap(
    db: Session, route_id: str, traffic_model: str = "best_guess"
) -> list[dict]:
    """Average predicted minutes per (day_of_week, hour, direction), for instant heatmaps"""
    rows = (
        db.query(
            Prediction.day_of_week,
            Prediction.hour_local,
            Prediction.direction,
            func.avg(Prediction.predicted_duration_seconds).label("avg_seconds"),
            func.count(Prediction.id).label("sample_count"),
        )
        .filter(Prediction.route_id == route_id, Prediction.traffic_model == traffic_model)
        .group_by(Prediction.day_of_week, Prediction.hour_local, Prediction.direction)
        .order_by(Prediction.day_of_week, Prediction.hour_local, Prediction.direction)
        .all()
    )
    return [
        {
            "day_of_week": row.day_of_week,
            "hour": row.hour_local,
            "direction": row.direction,
            "avg_minutes": _to_minutes(float(row.avg_seconds)),
            "sample_count": row.sample_count,
        }
        for row in rows
    ]


def store_predictions(
    db: Session,
    predictions: Sequence[PredictionResult],
    predicted_at: datetime,
    timezone: str,
) -> int:
    """
    Insert fetched predictions

    Bucket keys and the holiday flag come from predicted_for in the local zone and
    are stamped here, once.

    Returns:
        Number of rows inserted
    """
    predicted_at_local = stamp_local(predicted_at, timezone).local_timestamp

    for result in predictions:
        stamp = stamp_local(result.predicted_for, timezone)
        db.add(
            Prediction(
                route_id=result.route_id,
                direction=result.direction,
                predicted_at=predicted_at,
                predicted_at_local=predicted_at_local,
                predicted_for=result.predicted_for,
                predicted_for_local=stamp.local_timestamp,
                predicted_duration_seconds=result.predicted_duration_seconds,
                traffic_model=result.traffic_model,
                day_of_week=stamp.day_of_week,
                hour_local=stamp.hour_local,
                is_holiday=stamp.is_holiday,
            )
        )

    db.commit()
    logger.info("Stored %d predictions", len(predictions))
    return len(predictions)
