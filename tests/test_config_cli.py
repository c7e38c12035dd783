"""
Tests for settings and the command line.
"""

import json
from pathlib import Path

import pytest

from brennerbot.config import Settings
from brennerbot.loop.schemas import EvidenceResult, InputValidationError
from brennerbot.main import parse_assumed_test, run


def test_settings_defaults_build_engine_configs() -> None:
    settings = Settings(_env_file=None)

    config = settings.confidence_config()
    thresholds = settings.analytics_thresholds()

    assert config.support_weight == pytest.approx(0.30)
    assert config.asymmetry_factor == pytest.approx(1.5)
    assert thresholds.falsified_below == 20.0
    assert thresholds.robust_above == 80.0


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRENNERBOT_ASYMMETRY_FACTOR", "2.0")
    monkeypatch.setenv("BRENNERBOT_LOG_LEVEL", "DEBUG")

    settings = Settings(_env_file=None)

    assert settings.confidence_config().asymmetry_factor == 2.0
    assert settings.log_level == "DEBUG"


def test_parse_assumed_test() -> None:
    test = parse_assumed_test("gene knockout:4:Challenges", 0)

    assert test.test_id == "T1"
    assert test.test_name == "gene knockout"
    assert test.discriminative_power == 4
    assert test.assumed_result is EvidenceResult.CHALLENGES


@pytest.mark.parametrize("spec", ["knockout", "knockout:x:supports", "knockout:3:perhaps"])
def test_parse_assumed_test_rejects_bad_specs(spec: str) -> None:
    with pytest.raises(InputValidationError):
        parse_assumed_test(spec, 0)


@pytest.mark.asyncio
async def test_what_if_command(capsys: pytest.CaptureFixture[str]) -> None:
    code = await run(["what-if", "--confidence", "50", "--power", "1", "--power", "5"])
    output = json.loads(capsys.readouterr().out)

    assert code == 0
    assert output["recommendation"]["test_id"] == "T2"
    assert len(output["ranked_tests"]) == 2


@pytest.mark.asyncio
async def test_scenario_command(capsys: pytest.CaptureFixture[str]) -> None:
    code = await run(["scenario", "--confidence", "50", "--test", "a:5:supports", "--test", "b:5:challenges"])
    output = json.loads(capsys.readouterr().out)

    assert code == 0
    assert output["expected_case"]["confidence"] == pytest.approx(35.75)


@pytest.mark.asyncio
async def test_analytics_command_from_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    sessions_file = tmp_path / "sessions.json"
    sessions_file.write_text(
        json.dumps(
            {
                "sessions": [
                    {
                        "id": "S1",
                        "createdAt": "2026-01-30T10:00:00Z",
                        "updatedAt": "2026-01-30T10:10:00Z",
                        "phase": "complete",
                    }
                ]
            }
        ),
        encoding="utf-8",
    )

    code = await run(["analytics", "--sessions", str(sessions_file), "--now", "2026-01-31T00:00:00Z"])
    output = json.loads(capsys.readouterr().out)

    assert code == 0
    assert output["sessions_total"] == 1
    assert output["sessions_completed"] == 1
    assert len(output["trends_over_30_days"]["points"]) == 30


def _reject_constant(token: str) -> None:
    raise ValueError(f"non-standard JSON constant {token}")


@pytest.mark.asyncio
async def test_what_if_command_writes_strict_json_at_full_confidence(capsys: pytest.CaptureFixture[str]) -> None:
    code = await run(["what-if", "--confidence", "100", "--power", "5"])
    output = json.loads(capsys.readouterr().out, parse_constant=_reject_constant)

    assert code == 0
    assert output["ranked_tests"][0]["analysis"]["asymmetry_ratio"] == "unbounded"
