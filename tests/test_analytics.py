"""
Analytics tests for Commute Traffic Tracker

Tests percentiles, per-direction summaries, hourly variance ranking, traffic pattern
classification and reliability curves.

Run with: pytest tests/test_analytics.py
"""

from types import SimpleNamespace

import pytest

from src.analytics import (
    PATTERN_TYPES,
    classify_traffic_patterns,
    coefficient_of_variation,
    get_analytics_report,
    get_hourly_variance,
    get_reliability_metrics,
    get_statistical_summary,
    get_traffic_patterns,
    group_minutes_by_direction,
    hourly_variance,
    pattern_thresholds,
    percentile,
    reliability_curve,
    statistical_summary,
    summarize,
)
from src.queries import FilterSpec
from src.rounding import round_half_up, round_or_none


def trip(minutes, direction="outbound", hour=9):
    """Lightweight stand-in for a Measurement row"""
    return SimpleNamespace(
        direction=direction, hour_local=hour, duration_in_traffic_seconds=minutes * 60
    )


SCENARIO_MINUTES = [60, 70, 80, 90, 100, 110, 120]


class TestPercentile:
    """Tests for linear-interpolation percentiles"""

    def test_known_array(self):
        values = [10, 20, 30, 40, 50]
        assert percentile(values, 50) == 30
        assert percentile(values, 90) == pytest.approx(46)
        assert percentile(values, 0) == 10
        assert percentile(values, 100) == 50

    def test_even_length_median_averages_middle_values(self):
        assert percentile([10, 20, 30, 40], 50) == 25

    def test_single_value(self):
        assert percentile([42], 95) == 42

    def test_empty_returns_none(self):
        assert percentile([], 50) is None


class TestRounding:
    """Tests for rounding halves away from zero"""

    @pytest.mark.parametrize(
        "value, digits, expected",
        [
            (44.5, 0, 45.0),
            (30.25, 1, 30.3),
            (30.75, 1, 30.8),
            (30.24, 1, 30.2),
            (0.0625, 3, 0.063),
            (-0.25, 1, -0.3),
            (-0.04, 1, 0.0),
            (0.0, 1, 0.0),
        ],
    )
    def test_round_half_up(self, value, digits, expected):
        assert round_half_up(value, digits) == expected

    def test_round_or_none(self):
        assert round_or_none(None, 1) is None
        assert round_or_none(2.25, 1) == 2.3


class TestSummarize:
    """Tests for the per-direction percentile summary"""

    def test_scenario_summary(self):
        summary = summarize("outbound", SCENARIO_MINUTES)

        assert summary["direction"] == "outbound"
        assert summary["sample_count"] == 7
        assert summary["mean_minutes"] == 90.0
        assert summary["median_minutes"] == 90.0
        assert summary["p75_minutes"] == 105.0
        assert summary["p90_minutes"] == 114.0
        assert summary["p95_minutes"] == 117.0
        assert summary["std_dev_minutes"] == 20.0
        assert summary["min_minutes"] == 60.0
        assert summary["max_minutes"] == 120.0
        assert summary["coefficient_of_variation"] == 0.222

    def test_population_std_dev(self):
        summary = summarize("inbound", [10, 20, 30, 40, 50])
        assert summary["std_dev_minutes"] == 14.1
        assert summary["coefficient_of_variation"] == 0.471

    def test_unsorted_input(self):
        assert summarize("outbound", [120, 60, 90, 70, 110, 80, 100]) == summarize(
            "outbound", SCENARIO_MINUTES
        )

    def test_exact_halves_round_up(self):
        # 1815 s = 30.25 min
        summary = summarize("outbound", [1815 / 60])
        assert summary["mean_minutes"] == 30.3
        assert summary["median_minutes"] == 30.3
        assert summary["max_minutes"] == 30.3

    def test_empty_returns_none(self):
        assert summarize("outbound", []) is None

    def test_zero_mean_gives_no_cv(self):
        summary = summarize("outbound", [0, 0, 0])
        assert summary["coefficient_of_variation"] is None
        assert coefficient_of_variation(0.0, 0.0) is None


class TestStatisticalSummary:
    """Tests for grouping measurements into per-direction summaries"""

    def test_one_summary_per_direction_sorted(self):
        measurements = [trip(m) for m in SCENARIO_MINUTES] + [
            trip(m, direction="inbound") for m in [10, 20, 30]
        ]
        summaries = statistical_summary(measurements)

        assert [s["direction"] for s in summaries] == ["inbound", "outbound"]
        assert summaries[0]["sample_count"] == 3
        assert summaries[1]["sample_count"] == 7

    def test_missing_direction_is_omitted(self):
        summaries = statistical_summary([trip(m) for m in SCENARIO_MINUTES])
        assert [s["direction"] for s in summaries] == ["outbound"]

    def test_empty(self):
        assert statistical_summary([]) == []

    def test_group_minutes_by_direction(self):
        grouped = group_minutes_by_direction([trip(30), trip(15, direction="inbound"), trip(45)])
        assert grouped == {"outbound": [30.0, 45.0], "inbound": [15.0]}


class TestHourlyVariance:
    """Tests for ranking hours by coefficient of variation"""

    def test_sorted_by_cv_descending(self):
        measurements = [
            trip(30, hour=8),
            trip(30, hour=8),
            trip(20, hour=9),
            trip(40, hour=9),
            trip(10, direction="inbound", hour=9),
            trip(30, direction="inbound", hour=9),
        ]
        rows = hourly_variance(measurements)

        assert [(r["hour"], r["direction"]) for r in rows] == [
            (9, "inbound"),
            (9, "outbound"),
            (8, "outbound"),
        ]
        assert rows[0]["coefficient_of_variation"] == 0.5
        assert rows[0]["avg_minutes"] == 20.0
        assert rows[0]["std_dev_minutes"] == 10.0
        assert rows[1]["coefficient_of_variation"] == 0.333
        assert rows[2]["coefficient_of_variation"] == 0.0

    def test_ties_keep_hour_then_direction_order(self):
        measurements = [
            trip(30, hour=8),
            trip(30, direction="inbound", hour=8),
            trip(30, hour=7),
        ]
        rows = hourly_variance(measurements)
        assert [(r["hour"], r["direction"]) for r in rows] == [
            (7, "outbound"),
            (8, "inbound"),
            (8, "outbound"),
        ]

    def test_undefined_cv_sorts_last(self):
        measurements = [trip(0, hour=6), trip(20, hour=7), trip(40, hour=7)]
        rows = hourly_variance(measurements)

        assert rows[0]["hour"] == 7
        assert rows[-1]["hour"] == 6
        assert rows[-1]["coefficient_of_variation"] is None

    def test_bucket_counts_sum_to_direction_total(self):
        measurements = [trip(m, hour=6 + i % 3) for i, m in enumerate(SCENARIO_MINUTES)]
        rows = hourly_variance(measurements)
        assert sum(r["sample_count"] for r in rows) == len(SCENARIO_MINUTES)

    def test_empty(self):
        assert hourly_variance([]) == []


class TestTrafficPatterns:
    """Tests for the five-bucket traffic pattern classification"""

    def test_scenario_thresholds(self):
        thresholds = pattern_thresholds([summarize("outbound", SCENARIO_MINUTES)])
        assert thresholds == {
            "very_fast_max": 80.0,
            "fast_max": 90.0,
            "moderate_max": 100.0,
            "slow_max": 120.0,
        }

    def test_scenario_counts_with_inclusive_boundaries(self):
        patterns = classify_traffic_patterns([trip(m) for m in SCENARIO_MINUTES])
        counts = {p["pattern_type"]: p["occurrence_count"] for p in patterns}

        # Each boundary value belongs to the lower bucket: 80 -> very_fast,
        # 90 -> fast, 100 -> moderate, 120 -> slow
        assert counts == {"very_fast": 3, "fast": 1, "moderate": 1, "slow": 2, "very_slow": 0}

    def test_always_five_rows_in_order(self):
        patterns = classify_traffic_patterns([trip(m) for m in SCENARIO_MINUTES])

        assert [p["pattern_type"] for p in patterns] == list(PATTERN_TYPES)
        assert patterns[0]["min_threshold_minutes"] == 0.0
        assert patterns[0]["max_threshold_minutes"] == 80.0
        assert patterns[1]["min_threshold_minutes"] == 80.0
        assert patterns[-1]["min_threshold_minutes"] == 120.0
        assert patterns[-1]["max_threshold_minutes"] is None

    def test_percentages_sum_to_100(self):
        measurements = [trip(m) for m in SCENARIO_MINUTES] + [
            trip(m, direction="inbound") for m in [10, 20, 30, 40, 50]
        ]
        patterns = classify_traffic_patterns(measurements)

        assert sum(p["occurrence_count"] for p in patterns) == len(measurements)
        assert sum(p["percentage"] for p in patterns) == pytest.approx(100, abs=0.5)

    def test_wide_spread_clamps_very_fast_to_zero(self):
        # mean 20.9, std dev 59.7: very_fast_max would be -8.95
        measurements = [trip(1)] * 9 + [trip(200)]
        patterns = classify_traffic_patterns(measurements)

        assert patterns[0]["min_threshold_minutes"] == 0.0
        assert patterns[0]["max_threshold_minutes"] == 0.0
        assert patterns[1]["min_threshold_minutes"] == 0.0
        assert patterns[1]["max_threshold_minutes"] == 20.9
        assert [p["occurrence_count"] for p in patterns] == [0, 9, 0, 0, 1]

    def test_thresholds_average_directions(self):
        summaries = [
            {"mean_minutes": 90.0, "std_dev_minutes": 20.0},
            {"mean_minutes": 30.0, "std_dev_minutes": 10.0},
        ]
        thresholds = pattern_thresholds(summaries)
        assert thresholds["fast_max"] == 60.0
        assert thresholds["very_fast_max"] == 52.5
        assert thresholds["slow_max"] == 82.5

    def test_empty(self):
        assert classify_traffic_patterns([]) == []
        assert pattern_thresholds([]) is None


class TestReliabilityCurve:
    """Tests for 'N% of trips finish within T minutes'"""

    def test_default_levels(self):
        rows = reliability_curve({"outbound": SCENARIO_MINUTES})

        assert [r["confidence_level"] for r in rows] == [50, 75, 80, 90, 95]
        assert [r["duration_minutes"] for r in rows] == [90, 105, 108, 114, 117]

    def test_monotonic(self):
        rows = reliability_curve({"outbound": [33, 41, 29, 55, 38, 47, 30, 62]})
        durations = [r["duration_minutes"] for r in rows]
        assert durations == sorted(durations)

    def test_sorted_by_direction_then_level(self):
        rows = reliability_curve(
            {"outbound": SCENARIO_MINUTES, "inbound": [10, 20, 30, 40, 50]}, levels=[90, 50]
        )
        assert [(r["direction"], r["confidence_level"]) for r in rows] == [
            ("inbound", 50),
            ("inbound", 90),
            ("outbound", 50),
            ("outbound", 90),
        ]
        assert rows[1]["duration_minutes"] == 46

    def test_exact_half_minute_rounds_up(self):
        rows = reliability_curve({"outbound": [44, 45]}, levels=(50,))
        assert rows[0]["duration_minutes"] == 45

    def test_single_sample(self):
        rows = reliability_curve({"inbound": [42.0]})
        assert len(rows) == 5
        assert all(r["duration_minutes"] == 42 for r in rows)

    def test_empty(self):
        assert reliability_curve({}) == []


class TestDatabaseAnalytics:
    """Tests for the get_* entry points over stored measurements"""

    def test_statistical_summary(self, db_session, sample_measurements):
        summaries = get_statistical_summary(db_session)

        assert [s["direction"] for s in summaries] == ["inbound", "outbound"]
        outbound = summaries[1]
        assert outbound["mean_minutes"] == 90.0
        assert outbound["p90_minutes"] == 114.0

    def test_direction_filter(self, db_session, sample_measurements):
        summaries = get_statistical_summary(db_session, FilterSpec(direction="inbound"))
        assert len(summaries) == 1
        assert summaries[0]["mean_minutes"] == 30.0

    def test_traffic_patterns_outbound(self, db_session, sample_measurements):
        patterns = get_traffic_patterns(db_session, FilterSpec(direction="outbound"))
        assert [p["occurrence_count"] for p in patterns] == [3, 1, 1, 2, 0]

    def test_hourly_variance_one_row_per_bucket(self, db_session, sample_measurements):
        rows = get_hourly_variance(db_session)
        # One trip per hour per direction
        assert len(rows) == 12
        assert all(r["sample_count"] == 1 for r in rows)

    def test_reliability_custom_levels(self, db_session, sample_measurements):
        rows = get_reliability_metrics(
            db_session, FilterSpec(direction="outbound"), levels=[50, 95]
        )
        assert rows == [
            {"direction": "outbound", "confidence_level": 50, "duration_minutes": 90},
            {"direction": "outbound", "confidence_level": 95, "duration_minutes": 117},
        ]

    def test_report_consistent_sample_counts(self, db_session, sample_measurements):
        report = get_analytics_report(db_session)

        assert report["total_samples"] == 12
        assert sum(s["sample_count"] for s in report["summary"]) == 12
        assert sum(r["sample_count"] for r in report["hourly_variance"]) == 12
        assert sum(p["occurrence_count"] for p in report["traffic_patterns"]) == 12

    def test_empty_database(self, db_session):
        assert get_statistical_summary(db_session) == []
        assert get_traffic_patterns(db_session) == []
        assert get_reliability_metrics(db_session) == []
