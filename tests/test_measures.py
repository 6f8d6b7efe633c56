"""Tests for measure selection, ordering and status transitions."""

from __future__ import annotations

import pytest

from measure_status import transition
from saturation_measures import (
    DEFAULT_MEASURE_CATALOG,
    Measure,
    MeasureCatalog,
    build_measures,
    select_measures,
    sort_measures,
)


TEXT = {key: rule.description for key, rule in DEFAULT_MEASURE_CATALOG.rules.items()}


class TestSelectMeasures:
    def test_green_has_no_measures(self, make_snapshot) -> None:
        assert select_measures("GREEN", make_snapshot("GREEN")) == []

    def test_yellow_long_wait_measure_is_conditional(self, make_snapshot) -> None:
        with_waits = select_measures("YELLOW", make_snapshot("YELLOW", waiting_72_hours_patients=1))
        without = select_measures("YELLOW", make_snapshot("YELLOW", waiting_72_hours_patients=0))
        assert TEXT["manage_long_waits"] in with_waits
        assert TEXT["manage_long_waits"] not in without
        assert len(with_waits) == len(without) + 1

    def test_orange_order(self, make_snapshot) -> None:
        selected = select_measures("ORANGE", make_snapshot("ORANGE"))
        assert selected == [
            TEXT["activate_orange_key"],
            TEXT["notify_shift_lead"],
            TEXT["expedite_discharges"],
            TEXT["open_contingency_beds"],
            TEXT["reinforce_staff"],
            TEXT["manage_long_waits"],
        ]

    def test_surge_measure_only_when_surge_active(self, make_snapshot) -> None:
        text = TEXT["surge_support"]
        assert text not in select_measures("RED", make_snapshot("RED"))
        assert text in select_measures("RED", make_snapshot("RED", surge_active=True, surge_patients=6))

    def test_critical_protocol_measure(self, make_snapshot) -> None:
        text = TEXT["critical_bed_coordination"]
        assert text in select_measures("RED", make_snapshot("RED"))
        assert text not in select_measures("ORANGE", make_snapshot("ORANGE"))

    def test_deterministic(self, make_snapshot) -> None:
        snap = make_snapshot("RED", surge_active=True, surge_patients=9)
        assert select_measures("RED", snap) == select_measures("RED", snap)

    def test_duplicates_removed(self, make_snapshot) -> None:
        catalog = MeasureCatalog.from_dict(
            {
                "rules": {
                    "a": {"description": "Llamar a jefe de turno"},
                    "b": {"description": "Llamar a jefe de turno"},
                    "c": {"description": "Abrir box"},
                },
                "levels": {"YELLOW": ["a", "c", "a", "b"]},
            }
        )
        assert select_measures("YELLOW", make_snapshot(), catalog) == ["Llamar a jefe de turno", "Abrir box"]

    def test_catalog_rejects_unknown_rule(self) -> None:
        with pytest.raises(ValueError):
            MeasureCatalog.from_dict({"rules": {}, "levels": {"RED": ["missing"]}})

    def test_catalog_rejects_unknown_condition(self) -> None:
        with pytest.raises(ValueError):
            MeasureCatalog.from_dict({"rules": {"a": {"description": "x", "condition": "full_moon"}}})


class TestBuildMeasures:
    def test_original_order_follows_selection(self) -> None:
        measures = build_measures(["a", "b", "c"])
        assert [m.original_order_index for m in measures] == [0, 1, 2]
        assert {m.status for m in measures} == {"not_applied"}


class TestSortMeasures:
    def _three(self) -> list:
        return build_measures(["primera", "segunda", "tercera"])

    def test_applied_measure_moves_last(self) -> None:
        m0, m1, m2 = self._three()
        ordered = sort_measures([m0, m1.with_status("applied"), m2])
        assert [m.description for m in ordered] == ["primera", "tercera", "segunda"]

    def test_in_process_between_pending_and_applied(self) -> None:
        m0, m1, m2 = self._three()
        ordered = sort_measures([m0.with_status("applied"), m1.with_status("in_process"), m2])
        assert [m.status for m in ordered] == ["not_applied", "in_process", "applied"]

    def test_idempotent(self) -> None:
        m0, m1, m2 = self._three()
        once = sort_measures([m2.with_status("in_process"), m1, m0.with_status("applied")])
        assert sort_measures(once) == once

    def test_ties_by_original_index(self) -> None:
        measures = [Measure("c", 2), Measure("a", 0), Measure("b", 1)]
        assert [m.original_order_index for m in sort_measures(measures)] == [0, 1, 2]


class TestTransition:
    @pytest.mark.parametrize("start", ["not_applied", "in_process", "applied"])
    @pytest.mark.parametrize("target", ["not_applied", "in_process", "applied"])
    def test_any_status_reachable(self, start, target) -> None:
        measure = Measure("x", 0, status=start)
        updated = transition(measure, target)
        assert updated.status == target
        assert updated.original_order_index == 0
        assert measure.status == start

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError):
            transition(Measure("x", 0), "done")
