from __future__ import annotations

import csv
import json

import httpx
import pytest
from typer.testing import CliRunner

from trade_harvester.app import AppState, app
from trade_harvester.config import GlobalConfig


def _history_handler(failing: set[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        source = body["portfolioId"]
        if source in failing:
            return httpx.Response(500, text="upstream exploded")
        if body.get("cursor") is None:
            records = [{"orderId": f"{source}-1", "updateTime": 1}, {"orderId": f"{source}-2", "updateTime": 1}]
            return httpx.Response(200, json={"data": {"list": records, "cursor": "c1"}})
        return httpx.Response(200, json={"data": {"list": [{"orderId": f"{source}-3", "updateTime": 1}]}})

    return handler


@pytest.fixture
def cli_state(temp_config_repository, sample_job_config):
    temp_config_repository.save_global_config(GlobalConfig(enable_progress_bar=False))
    temp_config_repository.save_job(sample_job_config())

    def _state(failing: set[str] = frozenset()) -> AppState:
        return AppState(
            repository=temp_config_repository,
            global_config=temp_config_repository.load_global_config(),
            transport=httpx.MockTransport(_history_handler(set(failing))),
        )

    return _state


def test_job_list_and_show(cli_state) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["job", "list"], obj=cli_state())
    assert result.exit_code == 0, result.output
    assert "demo" in result.output

    result = runner.invoke(app, ["job", "show", "demo"], obj=cli_state())
    assert result.exit_code == 0, result.output
    assert "api.example.com/history" in result.output
    assert "identity_fields" in result.output


def test_unknown_job_exits_with_error(cli_state) -> None:
    result = CliRunner().invoke(app, ["run", "missing"], obj=cli_state())
    assert result.exit_code == 1
    assert "not found" in result.output


def test_run_exports_merged_records(cli_state, temp_config_repository) -> None:
    result = CliRunner().invoke(app, ["run", "demo", "--no-progress"], obj=cli_state(failing={"gamma"}))

    assert result.exit_code == 0, result.output
    assert "gamma" in result.output
    assert "error" in result.output

    outputs = list(temp_config_repository.outputs_dir().glob("demo-*.csv"))
    assert len(outputs) == 1
    with outputs[0].open(encoding="utf-8", newline="") as stream:
        rows = list(csv.DictReader(stream))
    assert len(rows) == 6
    assert {row["portfolioId"] for row in rows} == {"alpha", "beta"}


def test_run_quiet_summary(cli_state) -> None:
    result = CliRunner().invoke(app, ["run", "demo", "--quiet", "--max-pages", "1"], obj=cli_state())

    assert result.exit_code == 0, result.output
    assert "6 records from 3/3 sources" in result.output


def test_run_fails_when_every_source_fails(cli_state) -> None:
    result = CliRunner().invoke(
        app, ["run", "demo", "--quiet"], obj=cli_state(failing={"alpha", "beta", "gamma"})
    )
    assert result.exit_code == 1
    assert "0 records from 0/3 sources" in result.output


def test_log_commands_show_source_logs(cli_state) -> None:
    runner = CliRunner()
    runner.invoke(app, ["run", "demo", "--quiet"], obj=cli_state(failing={"gamma"}))

    result = runner.invoke(app, ["log", "list"], obj=cli_state())
    assert result.exit_code == 0, result.output
    assert "gamma.log" in result.output

    result = runner.invoke(app, ["log", "show", "--source", "gamma", "--tail", "5"], obj=cli_state())
    assert result.exit_code == 0, result.output
    assert "attempt_fatal" in result.output


def test_run_resolves_discovered_sources(temp_config_repository, sample_job_config) -> None:
    temp_config_repository.save_global_config(GlobalConfig(enable_progress_bar=False))
    job = sample_job_config(
        name="leaders",
        sources=["alpha"],
        discovery={
            "url": "https://api.example.com/leaderboard",
            "variants": [{"dataType": "PNL"}, {"dataType": "ROI"}],
        },
    )
    temp_config_repository.save_job(job)
    history = _history_handler(set())

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/leaderboard":
            listed = {"PNL": [{"portfolioId": "alpha"}, {"leadPortfolioId": "beta"}], "ROI": [{"id": "delta"}]}
            return httpx.Response(200, json={"data": {"list": listed[json.loads(request.content)["dataType"]]}})
        return history(request)

    state = AppState(
        repository=temp_config_repository,
        global_config=temp_config_repository.load_global_config(),
        transport=httpx.MockTransport(handler),
    )
    result = CliRunner().invoke(app, ["run", "leaders", "--quiet"], obj=state)

    assert result.exit_code == 0, result.output
    assert "9 records from 3/3 sources" in result.output
