"""Alert classification for the saturation protocol.

This module intentionally keeps alert logic small and deterministic: a
total score falls into one of four contiguous bands, and an override
table can raise the result to a minimum level when the critical-patient
protocol is active.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional

from saturation_snapshot import CRITICAL_PROTOCOLS, Snapshot
from saturation_scoring import ScoreBreakdown


AlertLevel = Literal["GREEN", "YELLOW", "ORANGE", "RED"]

# Ordered by severity.
ALERT_LEVELS = ("GREEN", "YELLOW", "ORANGE", "RED")

# Levels that activate an intervention key; their measures are tracked.
ELEVATED_LEVELS = ("ORANGE", "RED")


def alert_rank(level: str) -> int:
    return ALERT_LEVELS.index(level)


def is_elevated(level: str) -> bool:
    return level in ELEVATED_LEVELS


def max_level(a: AlertLevel, b: AlertLevel) -> AlertLevel:
    return a if alert_rank(a) >= alert_rank(b) else b


@dataclass(frozen=True)
class AlertBands:
    """Inclusive lower bounds of the YELLOW, ORANGE and RED bands.

    Scores below `yellow_min` are GREEN. A score equal to a bound belongs
    to the higher band.
    """

    yellow_min: int = 5
    orange_min: int = 9
    red_min: int = 13

    def __post_init__(self) -> None:
        if not (0 < self.yellow_min < self.orange_min < self.red_min):
            raise ValueError(
                "band bounds must satisfy 0 < yellow_min < orange_min < red_min, got "
                f"{self.yellow_min}, {self.orange_min}, {self.red_min}"
            )


@dataclass(frozen=True)
class AlertPolicy:
    """Bands plus per-protocol floors.

    `protocol_floors` maps a critical-patient protocol value to the
    minimum alert level it forces regardless of score.
    """

    bands: AlertBands = field(default_factory=AlertBands)
    protocol_floors: Mapping[str, str] = field(default_factory=lambda: {"red": "ORANGE"})

    def __post_init__(self) -> None:
        for protocol, level in self.protocol_floors.items():
            if protocol not in CRITICAL_PROTOCOLS:
                raise ValueError(f"unknown critical protocol in floors: {protocol!r}")
            if level not in ALERT_LEVELS:
                raise ValueError(f"unknown alert level in floors: {level!r}")


def classify_score(total_score: int, bands: Optional[AlertBands] = None) -> AlertLevel:
    """Return the band level for a total score."""

    b = bands or AlertBands()

    if total_score >= b.red_min:
        return "RED"
    if total_score >= b.orange_min:
        return "ORANGE"
    if total_score >= b.yellow_min:
        return "YELLOW"
    return "GREEN"


def protocol_floor(snapshot: Snapshot, policy: Optional[AlertPolicy] = None) -> Optional[AlertLevel]:
    p = policy or AlertPolicy()
    return p.protocol_floors.get(snapshot.critical_patient_protocol)  # type: ignore[return-value]


def classify(
    score: ScoreBreakdown | int,
    snapshot: Snapshot,
    policy: Optional[AlertPolicy] = None,
) -> AlertLevel:
    """Classify a score, applying the critical-protocol floor."""

    p = policy or AlertPolicy()
    total = score.total_score if isinstance(score, ScoreBreakdown) else int(score)

    level = classify_score(total, p.bands)
    floor = protocol_floor(snapshot, p)
    if floor is not None:
        level = max_level(level, floor)
    return level
