"""
Main entry point for the BrennerBot command line.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from brennerbot.config import Settings, get_settings
from brennerbot.db import SessionRepository, create_engine, create_session_factory, init_db
from brennerbot.loop.analytics import compute_personal_analytics, parse_timestamp
from brennerbot.loop.schemas import EvidenceResult, InputValidationError, Session
from brennerbot.loop.what_if import (
    AssumedTestResult,
    CandidateTest,
    analyze_scenario,
    create_scenario,
    rank_candidate_tests,
    summarize_scenario,
)

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="brennerbot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analytics = subparsers.add_parser("analytics", help="Compute personal analytics")
    source = analytics.add_mutually_exclusive_group(required=True)
    source.add_argument("--sessions", type=Path, help="JSON file with a list of sessions")
    source.add_argument("--from-db", action="store_true", help="Load sessions from the configured database")
    analytics.add_argument("--now", help="Reference time (ISO 8601) for trend windows")
    analytics.add_argument("--user", default="local", help="User id to report for")

    what_if = subparsers.add_parser("what-if", help="Rank candidate tests by information value")
    what_if.add_argument("--confidence", type=float, required=True, help="Current confidence (0-100)")
    what_if.add_argument(
        "--power",
        type=int,
        action="append",
        required=True,
        help="Discriminative power (1-5) of a candidate test; repeat for each test",
    )

    scenario = subparsers.add_parser("scenario", help="Project a what-if scenario")
    scenario.add_argument("--confidence", type=float, required=True, help="Starting confidence (0-100)")
    scenario.add_argument(
        "--test",
        action="append",
        default=[],
        metavar="NAME:POWER:RESULT",
        help="Assumed test, e.g. 'knockout:4:challenges'; repeat for each test",
    )
    scenario.add_argument("--name", default="CLI Scenario", help="Scenario name")
    return parser


def parse_assumed_test(spec: str, index: int) -> AssumedTestResult:
    """Parse ``NAME:POWER:RESULT`` into an assumed test."""
    parts = spec.rsplit(":", 2)
    if len(parts) != 3 or not parts[0]:
        raise InputValidationError("test", f"expected NAME:POWER:RESULT, got {spec!r}")
    name, power, result = parts
    try:
        power_value = int(power)
    except ValueError as e:
        raise InputValidationError("discriminative_power", f"not an integer: {power!r}") from e
    try:
        outcome = EvidenceResult(result.strip().lower())
    except ValueError as e:
        raise InputValidationError("result", f"unknown evidence result {result!r}") from e
    return AssumedTestResult(
        test_id=f"T{index + 1}",
        test_name=name,
        discriminative_power=power_value,
        assumed_result=outcome,
    )


def load_sessions_file(path: Path) -> list[Any]:
    """Read sessions from a JSON file holding a list or ``{"sessions": [...]}``."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("sessions", [])
    if not isinstance(payload, list):
        raise InputValidationError("sessions", "expected a JSON list of sessions")
    return payload


async def load_sessions_from_db(settings: Settings) -> list[Session]:
    engine = create_engine(settings.database_url)
    try:
        await init_db(engine)
        factory = create_session_factory(engine)
        async with factory() as db_session:
            return await SessionRepository(db_session).list_all()
    finally:
        await engine.dispose()


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, allow_nan=False))


async def run(argv: list[str] | None = None) -> int:
    """
    Run one CLI command.

    Returns:
        Process exit code.
    """
    settings = get_settings()
    args = build_parser().parse_args(argv)
    config = settings.confidence_config()

    if args.command == "analytics":
        now: datetime | None = None
        if args.now:
            now = parse_timestamp(args.now)
            if now is None:
                raise InputValidationError("now", f"not an ISO timestamp: {args.now!r}")
        if args.from_db:
            sessions: list[Any] = await load_sessions_from_db(settings)
        else:
            sessions = load_sessions_file(args.sessions)
        logger.info(f"Computing analytics over {len(sessions)} session(s)")
        report = compute_personal_analytics(
            sessions,
            user_id=args.user,
            now=now,
            thresholds=settings.analytics_thresholds(),
        )
        _emit(report.model_dump(mode="json"))
        return 0

    if args.command == "what-if":
        candidates = [
            CandidateTest(test_id=f"T{i + 1}", test_name=f"Test {i + 1}", discriminative_power=power)
            for i, power in enumerate(args.power)
        ]
        ranking = rank_candidate_tests(args.confidence, candidates, config)
        _emit(ranking.model_dump(mode="json"))
        return 0

    if args.command == "scenario":
        assumed = [parse_assumed_test(spec, i) for i, spec in enumerate(args.test)]
        scenario = create_scenario(
            name=args.name,
            session_id="cli",
            hypothesis_id="cli",
            starting_confidence=args.confidence,
            assumed_tests=assumed,
            config=config,
        )
        analysis = analyze_scenario(scenario)
        logger.info(summarize_scenario(scenario))
        _emit(analysis.model_dump(mode="json"))
        return 0

    return 2


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        sys.exit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        sys.exit(130)
    except InputValidationError as e:
        logging.error(f"Invalid input: {e}")
        sys.exit(2)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
