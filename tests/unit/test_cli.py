from __future__ import annotations

import pytest

from results_sync import cli
from results_sync.domain.entities.sync_models import RunStatus, SyncResult
from results_sync.shared.exceptions.sync import SyncConfigError


def test_parser_options() -> None:
    args = cli.build_parser().parse_args(["--dry-run", "--row-mode", "variation", "--strategy", "replace"])

    assert args.dry_run is True
    assert args.row_mode == "variation"
    assert args.strategy == "replace"


def test_parser_rejects_unknown_strategy() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--strategy", "merge"])


@pytest.mark.parametrize(
    "status,code",
    [(RunStatus.COMPLETE, 0), (RunStatus.PARTIAL, 2), (RunStatus.ABORTED, 1)],
)
def test_exit_code_reflects_status(monkeypatch, tmp_path, status, code) -> None:
    async def fake_run_sync(args):
        return SyncResult(status=status)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "run_sync", fake_run_sync)

    assert cli.main([]) == code


def test_config_error_exits_with_failure(monkeypatch, tmp_path) -> None:
    async def fake_run_sync(args):
        raise SyncConfigError("Falta variable de entorno obligatoria: AIRTABLE_BASE_ID")

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "run_sync", fake_run_sync)

    assert cli.main([]) == 1
