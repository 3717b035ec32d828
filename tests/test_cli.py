from __future__ import annotations

import json
from pathlib import Path

import pytest

from erp_notice_sync import cli
from erp_notice_sync.errors import LoginRejectedError
from erp_notice_sync.state import StateStore

from fakes import QUESTIONS


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "sync.log"))
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("DEBUG_DIR", str(tmp_path / "artifacts" / "debug"))
    return tmp_path


def _complete_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTICES_URL", "https://erp.example.test/notices")
    monkeypatch.setenv("OTP_API_URL", "https://otp.example.test/otp")
    monkeypatch.setenv("NOTICE_WEBHOOK_URL", "https://hooks.example.test/in")
    monkeypatch.setenv("ERP_ROLL_NO", "23CS10012")
    monkeypatch.setenv("ERP_PASSWORD", "hunter2")
    monkeypatch.setenv("ERP_SECURITY_ANSWERS", json.dumps(QUESTIONS))


def _main(tmp_path: Path, *args: str) -> int:
    return cli.main(["--env-file", str(tmp_path / "missing.env"), *args, "--config", str(tmp_path / "config.yaml")])


class _RecordingOrchestrator:
    instances: list["_RecordingOrchestrator"] = []
    error: Exception | None = None

    def __init__(self, config, *, state=None) -> None:
        self.config = config
        self.state = state
        self.calls: list[tuple] = []
        _RecordingOrchestrator.instances.append(self)

    def run(self, credentials, watermark: str) -> None:
        self.calls.append((credentials.roll_no, watermark))
        run_id = self.state.record_run_start() if self.state is not None else None
        if self.error is not None:
            if run_id is not None:
                self.state.record_run_finish(run_id, ok=False, step="login", message=str(self.error))
            raise self.error


@pytest.fixture
def orchestrator(monkeypatch: pytest.MonkeyPatch):
    _RecordingOrchestrator.instances = []
    _RecordingOrchestrator.error = None
    monkeypatch.setattr(cli, "SyncOrchestrator", _RecordingOrchestrator)
    return _RecordingOrchestrator


def test_check_config_reports_missing_settings(env: Path) -> None:
    assert _main(env, "check-config") == 1


def test_check_config_ok(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _complete_env(monkeypatch)
    assert _main(env, "check-config") == 0


def test_unparseable_config_file_exits_2(env: Path) -> None:
    (env / "config.yaml").write_text("portal: [unclosed\n", encoding="utf-8")
    assert _main(env, "check-config") == 2


def test_env_file_is_loaded(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _complete_env(monkeypatch)
    monkeypatch.delenv("NOTICE_WEBHOOK_URL")
    env_file = env / "local.env"
    env_file.write_text("NOTICE_WEBHOOK_URL=https://hooks.example.test/from-env-file\n", encoding="utf-8")

    rc = cli.main(["--env-file", str(env_file), "check-config", "--config", str(env / "config.yaml")])

    assert rc == 0


def test_status_with_empty_run_log(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _main(env, "status") == 0
    assert "No runs recorded yet." in capsys.readouterr().out


def test_status_lists_recent_runs(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store = StateStore(str(env / "state.db"))
    try:
        ok_id = store.record_run_start()
        store.record_run_finish(ok_id, ok=True, step="done", delivered=4)
        failed_id = store.record_run_start()
        store.record_run_finish(failed_id, ok=False, step="login", message="LoginRejectedError: Invalid OTP entered")
        running_id = store.record_run_start()
    finally:
        store.close()

    assert _main(env, "status", "--limit", "5") == 0

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 3
    assert lines[0].startswith(f"#{running_id} running")
    assert lines[1].startswith(f"#{failed_id} FAILED")
    assert "step=login error=LoginRejectedError: Invalid OTP entered" in lines[1]
    assert lines[2].startswith(f"#{ok_id} ok")
    assert "delivered=4" in lines[2]


def test_status_unknown_run_id(env: Path) -> None:
    assert _main(env, "status", "--run-id", "42") == 1


def test_sync_without_credentials_exits_2(env: Path, monkeypatch: pytest.MonkeyPatch, orchestrator) -> None:
    _complete_env(monkeypatch)
    monkeypatch.delenv("ERP_PASSWORD")

    assert _main(env, "sync", "--since", "10-07-2025 09:00") == 2
    assert orchestrator.instances == []


def test_sync_runs_orchestrator_with_overrides(env: Path, monkeypatch: pytest.MonkeyPatch, orchestrator) -> None:
    _complete_env(monkeypatch)

    rc = _main(env, "sync", "--since", "10-07-2025 09:00", "--headful", "--slowmo-ms", "250")

    assert rc == 0
    (orch,) = orchestrator.instances
    assert orch.calls == [("23CS10012", "10-07-2025 09:00")]
    assert orch.config.portal.headless is False
    assert orch.config.portal.slow_mo_ms == 250
    assert isinstance(orch.state, StateStore)


def test_sync_failure_writes_debug_bundle(env: Path, monkeypatch: pytest.MonkeyPatch, orchestrator) -> None:
    _complete_env(monkeypatch)
    orchestrator.error = LoginRejectedError("Invalid OTP entered")

    assert _main(env, "sync", "--since", "10-07-2025 09:00") == 1
    assert list((env / "artifacts").glob("notice_sync_debug_run1_*.zip"))


def test_sync_failure_without_debug_bundle(env: Path, monkeypatch: pytest.MonkeyPatch, orchestrator) -> None:
    _complete_env(monkeypatch)
    orchestrator.error = LoginRejectedError("Invalid OTP entered")

    assert _main(env, "sync", "--since", "10-07-2025 09:00", "--no-debug-bundle") == 1
    assert not list((env / "artifacts").glob("*.zip"))
