"""Tests for the scheduled CLI trigger."""

from __future__ import annotations

import argparse
from typing import Any

import pytest

from handoff_patterns import cli
from handoff_patterns.config import AIProviderConfig, AppConfig, AuthConfig, DatabaseConfig
from handoff_patterns.domain.models import AnalyzeResponse, Caller, PatientError
from handoff_patterns.errors import ConfigurationError


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        ai_provider=AIProviderConfig(openai_api_key="sk-test"),
        auth=AuthConfig(jwt_secret="j" * 32, service_token="s" * 24),
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'patterns.db'}"),
    )


class _RecordingService:
    def __init__(self) -> None:
        self.calls: list[tuple[dict[str, Any], Caller]] = []

    async def run(self, payload: dict[str, Any], caller: Caller) -> AnalyzeResponse:
        self.calls.append((payload, caller))
        return AnalyzeResponse(patients_analyzed=2, patterns_created=1)


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.init_db is False
    assert args.patient_id is None
    assert args.circle_id is None
    assert args.range_days is None


def test_render_summary_counts_errors() -> None:
    response = AnalyzeResponse(
        patients_analyzed=3,
        patterns_created=2,
        patterns_updated=1,
        errors=[PatientError(patient_index=1, error="Failed to fetch handoffs")],
    )

    table = cli.render_summary(response)

    assert table.row_count == 1
    assert [column.header for column in table.columns][-1] == "Errors"


@pytest.mark.asyncio
async def test_run_analysis_runs_as_scheduled_caller(
    config: AppConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    service = _RecordingService()
    monkeypatch.setattr(cli, "build_service", lambda cfg, store: service)
    args = argparse.Namespace(init_db=True, patient_id=None, circle_id=None, range_days=None)

    response = await cli.run_analysis(config, args)

    assert response.patients_analyzed == 2
    [(payload, caller)] = service.calls
    assert caller.kind == "scheduled"
    assert payload == {"patientId": None, "circleId": None, "rangeStartDays": 30}


def test_main_reports_configuration_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken() -> AppConfig:
        raise ConfigurationError("Missing or invalid configuration (auth.jwt_secret)")

    monkeypatch.setattr(cli, "get_config", broken)

    assert cli.main([]) == 1


def test_main_exit_code_reflects_patient_errors(
    config: AppConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def fake_run(cfg: AppConfig, args: argparse.Namespace) -> AnalyzeResponse:
        return AnalyzeResponse(
            patients_analyzed=1, errors=[PatientError(patient_index=0, error="boom")]
        )

    monkeypatch.setattr(cli, "get_config", lambda: config)
    monkeypatch.setattr(cli, "configure_logging", lambda logging_config: None)
    monkeypatch.setattr(cli, "run_analysis", fake_run)

    assert cli.main(["--range-days", "14"]) == 2
