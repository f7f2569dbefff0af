from __future__ import annotations

from pathlib import Path

import pytest

from automation_diag.collect.base import DEFAULT_JOB_WINDOW_SIZE
from automation_diag.config import RunConfig, dump_config, load_run_config
from automation_diag.util.errors import ConfigError

_ENV_VARS = (
    "AA_DIAG_OUTDIR",
    "AA_DIAG_ACCOUNTS",
    "AA_DIAG_RUNBOOKS",
    "AA_DIAG_JOB_IDS",
    "AA_DIAG_ALL_STREAM_VALUES",
    "AA_DIAG_NUMBER_OF_JOBS",
    "AA_DIAG_RESOURCE_GROUP",
    "AA_DIAG_CLIENT_ID",
    "AA_DIAG_AUTH",
    "AA_DIAG_WORKERS_ACCOUNT",
    "AA_DIAG_WORKERS_ASSETS",
    "AA_DIAG_WORKERS_JOBS",
    "AA_DIAG_FORMATS",
    "AA_DIAG_TIMEOUT",
    "AA_DIAG_ZIP",
    "AA_DIAG_PROGRESS",
    "AA_DIAG_JSON_LOGS",
    "AA_DIAG_LOG_LEVEL",
    "AZURE_SUBSCRIPTION_ID",
    "AZURE_TENANT_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_for_run() -> None:
    command, cfg = load_run_config(argv=["run"])
    assert command == "run"
    assert isinstance(cfg, RunConfig)
    assert cfg.number_of_jobs == DEFAULT_JOB_WINDOW_SIZE == 20
    assert cfg.all_stream_values is False
    assert cfg.formats == ["txt", "csv", "json"]
    assert cfg.workers_account > 0
    assert cfg.workers_assets > 0
    assert cfg.workers_jobs > 0
    assert cfg.auth == "auto"
    assert cfg.timeout is None
    assert cfg.outdir.parent == Path("out")


def test_filters_built_from_config() -> None:
    _, cfg = load_run_config(
        argv=["run", "--accounts", "A,B", "--runbooks", "R1", "--job-ids", "j1, j2,j1", "--number-of-jobs", "5"]
    )

    filters = cfg.filters()

    assert filters.account_names == frozenset({"A", "B"})
    assert filters.runbook_names == frozenset({"R1"})
    assert filters.job_ids == frozenset({"j1", "j2"})
    assert filters.job_window_size == 5
    assert cfg.job_ids == ["j1", "j2"]


def test_env_overrides_defaults(monkeypatch) -> None:
    monkeypatch.setenv("AA_DIAG_NUMBER_OF_JOBS", "7")
    monkeypatch.setenv("AA_DIAG_ALL_STREAM_VALUES", "true")
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-env")

    _, cfg = load_run_config(argv=["run"])

    assert cfg.number_of_jobs == 7
    assert cfg.all_stream_values is True
    assert cfg.subscription_id == "sub-env"


def test_cli_overrides_env(monkeypatch) -> None:
    monkeypatch.setenv("AA_DIAG_NUMBER_OF_JOBS", "7")
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-env")

    _, cfg = load_run_config(argv=["run", "--number-of-jobs", "3", "--subscription", "sub-cli", "--no-zip"])

    assert cfg.number_of_jobs == 3
    assert cfg.subscription_id == "sub-cli"
    assert cfg.zip is False


def test_config_file_used_when_env_and_cli_missing(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("number_of_jobs: 4\nrunbooks: R1,R2\nformats: [json]\n", encoding="utf-8")

    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path), "--outdir", str(tmp_path / "out")])

    assert cfg.number_of_jobs == 4
    assert cfg.runbooks == ["R1", "R2"]
    assert cfg.formats == ["json"]
    assert cfg.outdir.parent == tmp_path / "out"


def test_repo_example_config_file_loads() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    cfg_path = repo_root / "config" / "aa-diag.yaml"

    _, cfg = load_run_config(argv=["run", "--config", str(cfg_path)])

    assert cfg.workers_assets == 4
    assert cfg.accounts is None


def test_config_file_rejects_bad_types(tmp_path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"number_of_jobs": "many"}', encoding="utf-8")

    with pytest.raises(ValueError):
        load_run_config(argv=["run", "--config", str(cfg_path)])


@pytest.mark.parametrize(
    "argv",
    [
        ["run", "--number-of-jobs", "0"],
        ["run", "--workers-jobs", "0"],
        ["run", "--formats", "xml"],
        ["run", "--timeout", "0"],
    ],
)
def test_invalid_values_raise_config_error(argv) -> None:
    with pytest.raises(ConfigError):
        load_run_config(argv=argv)


def test_formats_are_normalized_to_canonical_order() -> None:
    _, cfg = load_run_config(argv=["run", "--formats", "JSON,txt"])

    assert cfg.formats == ["txt", "json"]


def test_non_run_commands_do_not_timestamp_outdir() -> None:
    command, cfg = load_run_config(argv=["list-accounts", "--subscription", "sub"])

    assert command == "list-accounts"
    assert cfg.subscription_id == "sub"
    assert dump_config(cfg)["subscription_id"] == "sub"
