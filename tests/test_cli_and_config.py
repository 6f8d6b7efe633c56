"""Tests for the command-line entry point, settings and labels."""

from __future__ import annotations

import json

import pytest

from backend.config import Settings, get_settings
from main import main
from measure_status import EDIT_WINDOW_REASON, VIEWER_REASON, edit_window_reason
from saturation_labels import alert_label, forbidden_message, format_snapshot_value
from tests.fakes.fake_snapshots import LEVEL_FIELDS


@pytest.fixture
def snapshot_file(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps({"scenario": "reduced_capacity", "evaluator_name": "Dra. Rojas", **LEVEL_FIELDS["RED"]}),
        encoding="utf-8",
    )
    return path


class TestMain:
    def test_prints_evaluation(self, snapshot_file, capsys) -> None:
        assert main(["--snapshot", str(snapshot_file)]) == 0
        out = capsys.readouterr().out
        assert "Nivel de alerta: Roja (RED)" in out
        assert "Puntaje total: 13" in out
        assert "*Evaluación de Saturación Hospitalaria*" in out

    def test_output_json(self, snapshot_file, tmp_path) -> None:
        out_path = tmp_path / "out.json"
        assert main(["--snapshot", str(snapshot_file), "--output-json", str(out_path)]) == 0
        payload = json.loads(out_path.read_text(encoding="utf-8"))
        assert payload["alert_level"] == "RED"
        assert payload["next_evaluation_due"] is not None
        assert payload["explanations"][0].startswith("Nivel de alerta Roja")

    def test_persist_then_history(self, snapshot_file, tmp_path, capsys) -> None:
        db = str(tmp_path / "cli.db")
        assert main(["--snapshot", str(snapshot_file), "--persist", "--db-path", db]) == 0
        capsys.readouterr()

        assert main(["--history", "5", "--db-path", db]) == 0
        out = capsys.readouterr().out
        assert "1 evaluaciones almacenadas; mostrando 1" in out
        assert "puntaje=13" in out

    def test_invalid_snapshot(self, tmp_path, capsys) -> None:
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"scenario": "reduced_capacity"}), encoding="utf-8")
        assert main(["--snapshot", str(path)]) == 1
        assert "missing required fields" in capsys.readouterr().err

    def test_requires_input(self, capsys) -> None:
        assert main([]) == 2


class TestSettings:
    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("SATURATION_EDIT_WINDOW", "3")
        monkeypatch.setenv("SATURATION_CORS_ORIGINS_RAW", "http://a.test, http://b.test")
        settings = Settings()
        assert settings.edit_window == 3
        assert settings.cors_origins == ["http://a.test", "http://b.test"]

    def test_edit_window_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Settings(edit_window=0)

    def test_cached(self) -> None:
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestLabels:
    def test_alert_labels(self) -> None:
        assert [alert_label(level) for level in ("GREEN", "YELLOW", "ORANGE", "RED")] == [
            "Verde",
            "Amarilla",
            "Naranja",
            "Roja",
        ]

    def test_snapshot_values(self) -> None:
        assert format_snapshot_value("resuscitation_bay_patients", 3) == "3"
        assert format_snapshot_value("resuscitation_bay_patients", 3, surge_active=True) == "SAR activo"
        assert format_snapshot_value("surge_active", True) == "Sí"
        assert format_snapshot_value("critical_patient_protocol", None) == "No Activado"
        assert format_snapshot_value("surge_patients", None) == "No aplica"

    def test_forbidden_messages(self) -> None:
        assert forbidden_message(EDIT_WINDOW_REASON) == "Solo se pueden editar las medidas de las últimas 2 claves activadas"
        assert forbidden_message(edit_window_reason(3)) == "Solo se pueden editar las medidas de las últimas 3 claves activadas"
        assert forbidden_message(VIEWER_REASON) == "Su perfil no permite modificar medidas"
        assert forbidden_message("some other reason") == "some other reason"
