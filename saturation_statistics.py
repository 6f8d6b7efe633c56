"""Historical trends over stored evaluations.

The statistics screen works on a flat dataframe (one row per evaluation)
and answers a few questions:

- How often was each alert level reached, and how do containment
  (GREEN + YELLOW) and intervention (ORANGE + RED) compare?
- What is the average of each criterion per clinical day, split by the
  day (07:00-18:59) and night shifts?
- How often was SAR activated and with how many patients?
- Where is the daily mean total score heading?

A clinical reporting day starts at 07:00: an evaluation at 03:00 on the
5th belongs to the 4th.

Dependencies
------------
- pandas
- numpy
- scikit-learn
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Literal, Optional

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from alerts import ALERT_LEVELS
from saturation_evaluation import Evaluation
from saturation_snapshot import CLINICAL_TIMEZONE, CRITICAL_PROTOCOLS, to_clinical_time


DAY_START_HOUR = 7
NIGHT_START_HOUR = 19

TimeSlot = Literal["day", "night"]

STAT_CRITERIA = (
    "hospitalized_patients",
    "esi_c2_patients",
    "resuscitation_bay_patients",
    "waiting_72_hours_patients",
    "surge_patients",
    "total_score",
)

CONTAINMENT_LEVELS = ("GREEN", "YELLOW")
INTERVENTION_LEVELS = ("ORANGE", "RED")

_COLUMNS = [
    "id",
    "timestamp",
    "reporting_day",
    "time_slot",
    "alert_level",
    "total_score",
    "scenario",
    "hospitalized_patients",
    "esi_c2_patients",
    "resuscitation_bay_patients",
    "critical_patient_protocol",
    "waiting_72_hours_patients",
    "surge_active",
    "surge_patients",
]


def reporting_day(ts: datetime, tz_name: str = CLINICAL_TIMEZONE) -> date:
    local = to_clinical_time(ts, tz_name)
    if local.hour < DAY_START_HOUR:
        return (local - timedelta(days=1)).date()
    return local.date()


def time_slot(ts: datetime, tz_name: str = CLINICAL_TIMEZONE) -> TimeSlot:
    local = to_clinical_time(ts, tz_name)
    return "day" if DAY_START_HOUR <= local.hour < NIGHT_START_HOUR else "night"


def evaluations_frame(evaluations: Iterable[Evaluation], tz_name: str = CLINICAL_TIMEZONE) -> pd.DataFrame:
    """One row per evaluation, sorted by timestamp."""

    rows: List[Dict[str, object]] = []
    for ev in evaluations:
        snap = ev.snapshot
        rows.append(
            {
                "id": ev.id,
                "timestamp": to_clinical_time(ev.timestamp, tz_name),
                "reporting_day": reporting_day(ev.timestamp, tz_name),
                "time_slot": time_slot(ev.timestamp, tz_name),
                "alert_level": ev.alert_level,
                "total_score": ev.total_score,
                "scenario": snap.scenario,
                "hospitalized_patients": snap.hospitalized_patients,
                "esi_c2_patients": snap.esi_c2_patients,
                "resuscitation_bay_patients": snap.resuscitation_bay_patients,
                "critical_patient_protocol": snap.critical_patient_protocol,
                "waiting_72_hours_patients": snap.waiting_72_hours_patients,
                "surge_active": snap.surge_active,
                "surge_patients": snap.surge_patients,
            }
        )

    df = pd.DataFrame(rows, columns=_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("timestamp").reset_index(drop=True)


def filter_period(
    df: pd.DataFrame,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> pd.DataFrame:
    """Keep rows whose reporting day lies in [start, end]."""

    if df.empty:
        return df
    mask = pd.Series(True, index=df.index)
    if start is not None:
        mask &= df["reporting_day"] >= start
    if end is not None:
        mask &= df["reporting_day"] <= end
    return df.loc[mask].reset_index(drop=True)


def alert_level_distribution(
    df: pd.DataFrame,
    *,
    group_containment: bool = False,
    group_intervention: bool = False,
) -> Dict[str, Dict[str, float]]:
    """Counts and percentages per alert level.

    With grouping enabled, GREEN/YELLOW collapse into "containment" and
    ORANGE/RED into "intervention".
    """

    counts = df["alert_level"].value_counts() if not df.empty else pd.Series(dtype="int64")
    per_level: Dict[str, int] = {level: int(counts.get(level, 0)) for level in ALERT_LEVELS}

    buckets: Dict[str, int] = {}
    if group_containment:
        buckets["containment"] = sum(per_level[lvl] for lvl in CONTAINMENT_LEVELS)
    else:
        buckets.update({lvl: per_level[lvl] for lvl in CONTAINMENT_LEVELS})
    if group_intervention:
        buckets["intervention"] = sum(per_level[lvl] for lvl in INTERVENTION_LEVELS)
    else:
        buckets.update({lvl: per_level[lvl] for lvl in INTERVENTION_LEVELS})

    total = sum(buckets.values())
    return {
        key: {
            "count": count,
            "percentage": round(100.0 * count / total, 1) if total else 0.0,
        }
        for key, count in buckets.items()
    }


def _slot_rows(df: pd.DataFrame, slot: Optional[TimeSlot]) -> pd.DataFrame:
    if slot is None or df.empty:
        return df
    return df.loc[df["time_slot"] == slot]


def criterion_daily_average(
    df: pd.DataFrame,
    criterion: str,
    slot: Optional[TimeSlot] = None,
) -> pd.Series:
    """Mean of `criterion` per reporting day, optionally for one shift."""

    if criterion not in STAT_CRITERIA:
        raise ValueError(f"unknown criterion {criterion!r}")
    rows = _slot_rows(df, slot)
    if rows.empty:
        return pd.Series(dtype="float64", name=criterion)
    out = rows.groupby("reporting_day")[criterion].mean().astype(float)
    out.name = criterion
    return out


def criterion_average(df: pd.DataFrame, criterion: str, slot: Optional[TimeSlot] = None) -> float:
    """Mean over all rows (the reference line of the trend chart)."""

    if criterion not in STAT_CRITERIA:
        raise ValueError(f"unknown criterion {criterion!r}")
    rows = _slot_rows(df, slot)
    if rows.empty:
        return 0.0
    return float(rows[criterion].mean())


def surge_statistics(df: pd.DataFrame) -> Dict[str, float]:
    """SAR activations and the mean SAR patient count over activations."""

    if df.empty:
        return {"activations": 0, "average_surge_patients": 0.0}
    active = df.loc[df["surge_patients"] > 0, "surge_patients"]
    return {
        "activations": int(active.shape[0]),
        "average_surge_patients": float(active.mean()) if not active.empty else 0.0,
    }


def critical_protocol_distribution(df: pd.DataFrame) -> Dict[str, int]:
    counts = df["critical_patient_protocol"].value_counts() if not df.empty else pd.Series(dtype="int64")
    return {protocol: int(counts.get(protocol, 0)) for protocol in CRITICAL_PROTOCOLS}


def forecast_daily_scores(df: pd.DataFrame, horizon_days: int = 7) -> pd.DataFrame:
    """Project the daily mean total score with a linear trend.

    Fits a LinearRegression on (day index -> daily mean score) and
    predicts the next `horizon_days` reporting days. Predictions are
    clipped at 0. Needs at least two distinct days.
    """

    if horizon_days <= 0:
        raise ValueError("horizon_days must be > 0")

    daily = criterion_daily_average(df, "total_score")
    if daily.shape[0] < 2:
        raise ValueError("at least two reporting days are needed for a forecast")

    days = pd.to_datetime(pd.Series(daily.index))
    origin = days.iloc[0]
    X = ((days - origin).dt.days.to_numpy(dtype=float)).reshape(-1, 1)
    y = daily.to_numpy(dtype=float)

    model = LinearRegression()
    model.fit(X, y)

    last = days.iloc[-1]
    future = [last + pd.Timedelta(days=i) for i in range(1, horizon_days + 1)]
    X_future = np.array([(d - origin).days for d in future], dtype=float).reshape(-1, 1)
    predicted = np.clip(model.predict(X_future), 0.0, None)

    return pd.DataFrame(
        {
            "reporting_day": [d.date() for d in future],
            "predicted_total_score": predicted.round(2),
        }
    )
