"""Command-line saturation evaluation.

Reads a snapshot (JSON object with the form fields), runs the protocol
and prints the alert level, score breakdown, measures, explanations and
the shareable message.

Usage
-----
    python main.py --snapshot snapshot.json
    python main.py --snapshot snapshot.json --persist --db-path saturation.db
    python main.py --history 10 --db-path saturation.db

Example snapshot
----------------
    {
      "scenario": "reduced_capacity",
      "hospitalized_patients": 32,
      "esi_c2_patients": 11,
      "resuscitation_bay_patients": 4,
      "critical_patient_protocol": "red",
      "waiting_72_hours_patients": 2,
      "evaluator_name": "Dra. Rojas"
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from backend.evaluation_store import SQLiteEvaluationStore
from evaluation_session import EvaluationSession
from saturation_decision_engine import EngineConfig, evaluate_snapshot, next_evaluation_due
from saturation_errors import SaturationError
from saturation_evaluation import Evaluation, Principal
from saturation_labels import alert_label
from saturation_measures import sort_measures
from saturation_reporting import build_result_text, build_share_message
from saturation_scoring import DEFAULT_SCORING_TABLE, load_scoring_table
from saturation_snapshot import CLINICAL_TIMEZONE, parse_snapshot_form, validate_snapshot


logger = logging.getLogger("saturation")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ED saturation protocol evaluation")
    parser.add_argument(
        "--snapshot",
        type=str,
        default=None,
        help="Path to a JSON file with the snapshot form fields ('-' reads stdin).",
    )
    parser.add_argument(
        "--scoring-table",
        type=str,
        default=None,
        help="Optional JSON scoring table replacing the built-in one.",
    )
    parser.add_argument(
        "--timezone",
        type=str,
        default=CLINICAL_TIMEZONE,
        help="Clinical timezone used for timestamps.",
    )
    parser.add_argument(
        "--persist",
        action="store_true",
        help="Store the evaluation in the SQLite database.",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default="saturation.db",
        help="SQLite database used with --persist and --history.",
    )
    parser.add_argument(
        "--history",
        type=int,
        default=None,
        help="Print the N most recent stored evaluations and exit.",
    )
    parser.add_argument(
        "--output-json",
        type=str,
        default=None,
        help="Optional path to save the evaluation payload as JSON.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args(argv)


def load_snapshot_fields(source: str) -> Dict[str, Any]:
    if source == "-":
        data = json.load(sys.stdin)
    else:
        data = json.loads(Path(source).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("snapshot file must contain a JSON object")
    return data


def print_evaluation(evaluation: Evaluation, explanations: Any, tz_name: str) -> None:
    print(f"Nivel de alerta: {alert_label(evaluation.alert_level)} ({evaluation.alert_level})")
    print(f"Puntaje total: {evaluation.total_score}")
    print("Desglose:")
    for criterion, points in evaluation.score_breakdown.components.items():
        print(f"  {criterion}: {points}")

    print("\nExplicación:")
    for line in explanations:
        print(f"  {line}")

    print("\n" + build_result_text(evaluation))
    print("\n--- Mensaje para compartir ---")
    print(build_share_message(evaluation, tz_name))


def run_history(args: argparse.Namespace) -> int:
    store = SQLiteEvaluationStore(args.db_path, args.timezone)
    page = store.list_evaluations(limit=args.history)
    print(f"{page.total_count} evaluaciones almacenadas; mostrando {len(page.items)}")
    for ev in page.items:
        pending = sum(1 for m in ev.measures if m.status != "applied")
        print(
            f"#{ev.id} {ev.timestamp:%d/%m/%Y %H:%M} {alert_label(ev.alert_level):<9} "
            f"puntaje={ev.total_score:<3} evaluador={ev.evaluator_name} medidas_pendientes={pending}"
        )
    return 0


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.history is not None:
        return run_history(args)
    if not args.snapshot:
        print("error: --snapshot or --history is required", file=sys.stderr)
        return 2

    table = load_scoring_table(args.scoring_table) if args.scoring_table else DEFAULT_SCORING_TABLE
    config = EngineConfig(scoring_table=table)

    try:
        fields = load_snapshot_fields(args.snapshot)
        if args.persist:
            session = EvaluationSession(
                SQLiteEvaluationStore(args.db_path, args.timezone),
                config=config,
                tz_name=args.timezone,
            )
            evaluation = session.submit_form(fields, Principal(user_id="cli", role="editor"))
            explanations = session.state.explanations
        else:
            snapshot = validate_snapshot(parse_snapshot_form(fields), tz_name=args.timezone)
            outcome = evaluate_snapshot(snapshot, config)
            evaluation = Evaluation(
                snapshot=snapshot,
                score_breakdown=outcome.breakdown,
                alert_level=outcome.alert_level,
                measures=tuple(sort_measures(outcome.measures)),
                timestamp=snapshot.timestamp,
                reevaluation_note=outcome.reevaluation_note,
            )
            explanations = outcome.explanations
    except (SaturationError, ValueError) as exc:
        logger.error("evaluation_failed", extra={"error": str(exc)})
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print_evaluation(evaluation, explanations, args.timezone)

    if args.output_json:
        payload = evaluation.to_dict()
        due = next_evaluation_due(evaluation.alert_level, evaluation.timestamp, config.reevaluation)
        payload["next_evaluation_due"] = due.isoformat() if due is not None else None
        payload["explanations"] = list(explanations)
        out_path = Path(args.output_json)
        out_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"\nSaved evaluation JSON to: {out_path.resolve()}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
