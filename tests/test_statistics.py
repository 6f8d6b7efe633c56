"""Tests for historical statistics and the score forecast."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from saturation_statistics import (
    alert_level_distribution,
    critical_protocol_distribution,
    criterion_average,
    criterion_daily_average,
    evaluations_frame,
    filter_period,
    forecast_daily_scores,
    reporting_day,
    surge_statistics,
    time_slot,
)


def _frame(storage, tz_name):
    return evaluations_frame(storage.list_evaluations(limit=500).items, tz_name)


class TestReportingDay:
    def test_early_morning_belongs_to_previous_day(self, tz_name) -> None:
        ts = datetime(2024, 6, 5, 3, 0, tzinfo=ZoneInfo(tz_name))
        assert reporting_day(ts, tz_name) == date(2024, 6, 4)

    def test_day_starts_at_seven(self, tz_name) -> None:
        ts = datetime(2024, 6, 5, 7, 0, tzinfo=ZoneInfo(tz_name))
        assert reporting_day(ts, tz_name) == date(2024, 6, 5)

    @pytest.mark.parametrize("hour,slot", [(6, "night"), (7, "day"), (18, "day"), (19, "night"), (23, "night")])
    def test_time_slot(self, tz_name, hour, slot) -> None:
        ts = datetime(2024, 6, 5, hour, 30, tzinfo=ZoneInfo(tz_name))
        assert time_slot(ts, tz_name) == slot


class TestFrame:
    def test_rows_sorted_by_time(self, storage, submit_at, tz_name) -> None:
        submit_at("GREEN", hours=5)
        submit_at("RED", hours=1)
        df = _frame(storage, tz_name)
        assert list(df["alert_level"]) == ["RED", "GREEN"]
        assert list(df["time_slot"]) == ["day", "day"]
        assert list(df["reporting_day"]) == [date(2024, 6, 10)] * 2

    def test_empty(self, tz_name) -> None:
        df = evaluations_frame([], tz_name)
        assert df.empty
        assert alert_level_distribution(df)["GREEN"] == {"count": 0, "percentage": 0.0}
        assert surge_statistics(df) == {"activations": 0, "average_surge_patients": 0.0}
        assert criterion_daily_average(df, "total_score").empty

    def test_filter_period(self, storage, submit_at, tz_name) -> None:
        submit_at("GREEN", hours=-24)
        submit_at("GREEN", hours=0)
        submit_at("GREEN", hours=24)
        df = filter_period(_frame(storage, tz_name), date(2024, 6, 10), date(2024, 6, 10))
        assert df.shape[0] == 1


class TestDistributions:
    @pytest.fixture
    def mixed(self, storage, submit_at, tz_name):
        submit_at("GREEN", hours=0)
        submit_at("GREEN", hours=1)
        submit_at("YELLOW", hours=2)
        submit_at("ORANGE", hours=3, critical_patient_protocol="yellow")
        return _frame(storage, tz_name)

    def test_alert_levels(self, mixed) -> None:
        dist = alert_level_distribution(mixed)
        assert dist == {
            "GREEN": {"count": 2, "percentage": 50.0},
            "YELLOW": {"count": 1, "percentage": 25.0},
            "ORANGE": {"count": 1, "percentage": 25.0},
            "RED": {"count": 0, "percentage": 0.0},
        }

    def test_grouped(self, mixed) -> None:
        dist = alert_level_distribution(mixed, group_containment=True, group_intervention=True)
        assert dist == {
            "containment": {"count": 3, "percentage": 75.0},
            "intervention": {"count": 1, "percentage": 25.0},
        }

    def test_partially_grouped(self, mixed) -> None:
        dist = alert_level_distribution(mixed, group_intervention=True)
        assert list(dist) == ["GREEN", "YELLOW", "intervention"]

    def test_critical_protocol(self, mixed) -> None:
        assert critical_protocol_distribution(mixed) == {"none": 3, "yellow": 1, "red": 0}


class TestCriteria:
    def test_daily_average_by_slot(self, storage, submit_at, tz_name) -> None:
        submit_at("GREEN", hours=0, hospitalized_patients=10)
        submit_at("GREEN", hours=2, hospitalized_patients=20)
        # 21:00, night shift of the same reporting day
        submit_at("GREEN", hours=9, hospitalized_patients=6)
        df = _frame(storage, tz_name)

        assert criterion_daily_average(df, "hospitalized_patients", "day").tolist() == [15.0]
        assert criterion_daily_average(df, "hospitalized_patients", "night").tolist() == [6.0]
        assert criterion_daily_average(df, "hospitalized_patients").tolist() == [12.0]
        assert criterion_average(df, "hospitalized_patients") == 12.0

    def test_unknown_criterion(self, storage, submit_at, tz_name) -> None:
        submit_at("GREEN")
        with pytest.raises(ValueError):
            criterion_daily_average(_frame(storage, tz_name), "evaluator_name")

    def test_surge(self, storage, submit_at, tz_name) -> None:
        submit_at("RED", hours=0, surge_active=True, surge_patients=6)
        submit_at("RED", hours=1, surge_active=True, surge_patients=9)
        submit_at("GREEN", hours=2)
        assert surge_statistics(_frame(storage, tz_name)) == {"activations": 2, "average_surge_patients": 7.5}


class TestForecast:
    def test_linear_trend(self, storage, submit_at, tz_name) -> None:
        submit_at("GREEN", hours=0)
        submit_at("YELLOW", hours=24)
        forecast = forecast_daily_scores(_frame(storage, tz_name), horizon_days=2)

        assert list(forecast["reporting_day"]) == [date(2024, 6, 12), date(2024, 6, 13)]
        assert forecast["predicted_total_score"].tolist() == pytest.approx([10.0, 15.0])

    def test_clipped_at_zero(self, storage, submit_at, tz_name) -> None:
        submit_at("RED", hours=0)
        submit_at("GREEN", hours=24)
        forecast = forecast_daily_scores(_frame(storage, tz_name), horizon_days=3)
        assert forecast["predicted_total_score"].min() == 0.0

    def test_needs_two_days(self, storage, submit_at, tz_name) -> None:
        submit_at("ORANGE", hours=0)
        submit_at("RED", hours=1)
        with pytest.raises(ValueError):
            forecast_daily_scores(_frame(storage, tz_name))

    def test_horizon_must_be_positive(self, storage, submit_at, tz_name) -> None:
        with pytest.raises(ValueError):
            forecast_daily_scores(_frame(storage, tz_name), horizon_days=0)
