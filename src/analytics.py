"""
Statistical analysis of travel-time measurements

The functions in the first part of this module are pure: they take already-fetched
measurements (or minute values) and return plain dicts of minutes, ratios and
percentages. The get_* functions at the bottom fetch measurements through the shared
filter translation in src.queries and delegate to them.

All durations are reported in minutes (duration_in_traffic_seconds / 60). Minute
values are rounded to 1 decimal, coefficients of variation to 3 decimals (halves away
from zero, see src.rounding). A coefficient of variation is None when the mean is zero.
"""

from collections import defaultdict
from typing import Iterable, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from src.models import Measurement
from src.rounding import round_half_up, round_or_none
from src.queries import FilterSpec, fetch_measurements

DEFAULT_CONFIDENCE_LEVELS = (50, 75, 80, 90, 95)

PATTERN_TYPES = ("very_fast", "fast", "moderate", "slow", "very_slow")


def percentile(sorted_values: Sequence[float], p: float) -> Optional[float]:
    """
    Percentile with linear interpolation between order statistics

    index = p/100 * (n - 1); when the index falls between two positions the result
    is interpolated by the fractional part. p=50 on an even-length list is the
    average of the two middle values. This is numpy's default ("linear") method.

    Args:
        sorted_values: Values sorted ascending
        p: Percentile in [0, 100]

    Returns:
        The percentile, or None for empty input

    Example:
        >>> percentile([10, 20, 30, 40, 50], 90)
        46.0
    """
    if len(sorted_values) == 0:
        return None
    return float(np.percentile(sorted_values, p))


def coefficient_of_variation(std_dev: float, mean: float) -> Optional[float]:
    """std_dev / mean, or None when the mean is zero"""
    if mean == 0:
        return None
    return std_dev / mean


def group_minutes_by_direction(measurements: Iterable[Measurement]) -> dict[str, list[float]]:
    """Single pass: direction -> list of minute durations (in input order)"""
    by_direction = defaultdict(list)
    for m in measurements:
        by_direction[m.direction].append(m.duration_in_traffic_seconds / 60.0)
    return dict(by_direction)


def summarize(direction: str, minutes: Sequence[float]) -> Optional[dict]:
    """
    Percentile summary for one direction

    Args:
        direction: Direction the samples belong to
        minutes: Minute durations (any order)

    Returns:
        Summary dict, or None when there are no samples (callers omit the direction)
    """
    if len(minutes) == 0:
        return None

    values = np.sort(np.asarray(minutes, dtype=float))
    mean = float(np.mean(values))
    std_dev = float(np.std(values))  # population (ddof=0)

    return {
        "direction": direction,
        "sample_count": int(len(values)),
        "mean_minutes": round_half_up(mean, 1),
        "median_minutes": round_half_up(percentile(values, 50), 1),
        "p75_minutes": round_half_up(percentile(values, 75), 1),
        "p90_minutes": round_half_up(percentile(values, 90), 1),
        "p95_minutes": round_half_up(percentile(values, 95), 1),
        "std_dev_minutes": round_half_up(std_dev, 1),
        "min_minutes": round_half_up(float(values[0]), 1),
        "max_minutes": round_half_up(float(values[-1]), 1),
        "coefficient_of_variation": round_or_none(coefficient_of_variation(std_dev, mean), 3),
    }


def statistical_summary(measurements: Iterable[Measurement]) -> list[dict]:
    """One summary per direction present, ordered by direction name"""
    by_direction = group_minutes_by_direction(measurements)
    summaries = []
    for direction in sorted(by_direction):
        summary = summarize(direction, by_direction[direction])
        if summary is not None:
            summaries.append(summary)
    return summaries


def hourly_variance(measurements: Iterable[Measurement]) -> list[dict]:
    """
    Rank (hour, direction) buckets by unpredictability

    Groups measurements by their stored hour_local and direction in one pass, then
    computes mean, population standard deviation and coefficient of variation per
    bucket.

    Returns:
        Rows sorted by coefficient_of_variation descending (most unpredictable first).
        Ties keep ascending (hour, direction) order; rows with an undefined
        coefficient sort last.
    """
    buckets = defaultdict(list)
    for m in measurements:
        buckets[(m.hour_local, m.direction)].append(m.duration_in_traffic_seconds / 60.0)

    rows = []
    for (hour, direction) in sorted(buckets):
        values = np.asarray(buckets[(hour, direction)], dtype=float)
        mean = float(np.mean(values))
        std_dev = float(np.std(values))
        rows.append(
            {
                "hour": hour,
                "direction": direction,
                "avg_minutes": round_half_up(mean, 1),
                "std_dev_minutes": round_half_up(std_dev, 1),
                "coefficient_of_variation": round_or_none(
                    coefficient_of_variation(std_dev, mean), 3
                ),
                "sample_count": int(len(values)),
            }
        )

    # list.sort is stable, so equal coefficients keep the (hour, direction) order
    rows.sort(
        key=lambda r: (
            r["coefficient_of_variation"] is None,
            -(r["coefficient_of_variation"] or 0),
        )
    )
    return rows


def pattern_thresholds(summaries: Sequence[dict]) -> Optional[dict]:
    """
    Category boundaries derived from the data

    The per-direction means and standard deviations are averaged across directions:
    very_fast <= mean - 0.5sd < fast <= mean < moderate <= mean + 0.5sd
    < slow <= mean + 1.5sd < very_slow

    Returns:
        Dict of the four upper bounds, or None when there are no summaries
    """
    if not summaries:
        return None

    overall_mean = float(np.mean([s["mean_minutes"] for s in summaries]))
    overall_std_dev = float(np.mean([s["std_dev_minutes"] for s in summaries]))

    return {
        "very_fast_max": overall_mean - 0.5 * overall_std_dev,
        "fast_max": overall_mean,
        "moderate_max": overall_mean + 0.5 * overall_std_dev,
        "slow_max": overall_mean + 1.5 * overall_std_dev,
    }


def classify_minutes(minutes: float, thresholds: dict) -> str:
    """Category for one duration; each boundary belongs to the lower category"""
    if minutes <= thresholds["very_fast_max"]:
        return "very_fast"
    if minutes <= thresholds["fast_max"]:
        return "fast"
    if minutes <= thresholds["moderate_max"]:
        return "moderate"
    if minutes <= thresholds["slow_max"]:
        return "slow"
    return "very_slow"


def classify_traffic_patterns(
    measurements: Sequence[Measurement], summaries: Optional[Sequence[dict]] = None
) -> list[dict]:
    """
    Classify every measurement (both directions pooled) into five traffic patterns

    Args:
        measurements: Filtered measurements
        summaries: Per-direction summaries of the same measurements (computed if omitted)

    Returns:
        Exactly five rows in PATTERN_TYPES order (zero-count categories included),
        or [] when there are no measurements
    """
    if summaries is None:
        summaries = statistical_summary(measurements)

    thresholds = pattern_thresholds(summaries)
    if thresholds is None:
        return []

    counts = dict.fromkeys(PATTERN_TYPES, 0)
    for m in measurements:
        counts[classify_minutes(m.duration_in_traffic_seconds / 60.0, thresholds)] += 1
    total = sum(counts.values())

    # very_fast_max is negative when the spread is wide; shown as 0
    bounds = [
        0.0,
        max(0.0, thresholds["very_fast_max"]),
        thresholds["fast_max"],
        thresholds["moderate_max"],
        thresholds["slow_max"],
        None,  # very_slow is open-ended
    ]

    patterns = []
    for i, pattern_type in enumerate(PATTERN_TYPES):
        count = counts[pattern_type]
        patterns.append(
            {
                "pattern_type": pattern_type,
                "min_threshold_minutes": round_half_up(bounds[i], 1),
                "max_threshold_minutes": round_or_none(bounds[i + 1], 1),
                "occurrence_count": count,
                "percentage": round_half_up(count / total * 100, 1) if total else 0.0,
            }
        )
    return patterns


def reliability_curve(
    minutes_by_direction: dict[str, Sequence[float]],
    levels: Sequence[int] = DEFAULT_CONFIDENCE_LEVELS,
) -> list[dict]:
    """
    "N% of trips finish within T minutes" for each direction and confidence level

    Uses the same linear-interpolation percentile as the summaries, rounded to a whole
    minute. Small samples still produce rows; callers decide display thresholds.

    Returns:
        Rows sorted by direction, then ascending confidence level
    """
    metrics = []
    for direction in sorted(minutes_by_direction):
        values = np.sort(np.asarray(minutes_by_direction[direction], dtype=float))
        if len(values) == 0:
            continue
        for level in sorted(levels):
            metrics.append(
                {
                    "direction": direction,
                    "confidence_level": level,
                    "duration_minutes": int(round_half_up(percentile(values, level))),
                }
            )
    return metrics


# ---------------------------------------------------------------------------
# Database-backed entry points
# ---------------------------------------------------------------------------


def get_statistical_summary(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Percentile summary per direction for the filtered measurements"""
    return statistical_summary(fetch_measurements(db, filters))


def get_hourly_variance(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Hourly variance ranking for the filtered measurements"""
    return hourly_variance(fetch_measurements(db, filters))


def get_traffic_patterns(db: Session, filters: Optional[FilterSpec] = None) -> list[dict]:
    """Five-bucket traffic pattern classification for the filtered measurements"""
    measurements = fetch_measurements(db, filters)
    return classify_traffic_patterns(measurements, statistical_summary(measurements))


def get_reliability_metrics(
    db: Session,
    filters: Optional[FilterSpec] = None,
    levels: Optional[Sequence[int]] = None,
) -> list[dict]:
    """Reliability curve per direction for the filtered measurements"""
    minutes_by_direction = group_minutes_by_direction(fetch_measurements(db, filters))
    return reliability_curve(minutes_by_direction, levels or DEFAULT_CONFIDENCE_LEVELS)


def get_analytics_report(db: Session, filters: Optional[FilterSpec] = None) -> dict:
    """
    All analytics over a single fetch of the filtered measurements

    Used by the dashboard so the four sections are computed from one snapshot.
    """
    measurements = fetch_measurements(db, filters)
    summaries = statistical_summary(measurements)
    return {
        "total_samples": len(measurements),
        "summary": summaries,
        "hourly_variance": hourly_variance(measurements),
        "traffic_patterns": classify_traffic_patterns(measurements, summaries),
        "reliability": reliability_curve(group_minutes_by_direction(measurements)),
    }
