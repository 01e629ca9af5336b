from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from conftest import FakeDocdex
from librarian import cli
from librarian.cli import app


@pytest.fixture()
def fake_docdex(monkeypatch: pytest.MonkeyPatch) -> FakeDocdex:
    client = FakeDocdex()
    monkeypatch.setattr(cli, "_build_docdex_client", lambda config, workspace: client)
    return client


def test_init_config_writes_template_once(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "librarian.yaml"
    runner = CliRunner()

    first = runner.invoke(app, ["init-config", "--config", str(config_path)], catch_exceptions=False)
    second = runner.invoke(app, ["init-config", "--config", str(config_path)], catch_exceptions=False)
    forced = runner.invoke(app, ["init-config", "--config", str(config_path), "--force"], catch_exceptions=False)

    assert first.exit_code == 0, first.output
    assert "Wrote" in first.output
    assert second.exit_code == 1
    assert "already exists" in second.output
    assert forced.exit_code == 0
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["docdex"]["base_url"] == "http://127.0.0.1:3210"
    assert data["librarian"]["max_files"] == 8


def test_health_reports_unavailable_docdex(tmp_path: Path, fake_docdex: FakeDocdex) -> None:
    fake_docdex.healthy = False

    result = CliRunner().invoke(app, ["health", "--config", str(tmp_path / "absent.yaml")], catch_exceptions=False)

    assert result.exit_code == 1
    assert "docdex: unavailable (connection refused)" in result.output


def test_health_prints_stats(tmp_path: Path, fake_docdex: FakeDocdex) -> None:
    result = CliRunner().invoke(app, ["health", "--config", str(tmp_path / "absent.yaml")], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "docdex: ok" in result.output
    assert '"num_docs": 12' in result.output


def test_assemble_prints_bundle(write_files, fake_docdex: FakeDocdex) -> None:
    root = write_files({"src/login.py": "def login():\n    return True\n"})
    fake_docdex.default_hits = [{"doc_id": "1", "path": "src/login.py", "score": 5}]

    result = CliRunner().invoke(
        app,
        ["assemble", "fix the login handler", "--workspace", str(root), "--config", str(root / "absent.yaml")],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "LIBRARIAN CONTEXT" in result.output
    assert "=== [FOCUS FILE] src/login.py (FULL) ===" in result.output


def test_assemble_json_mode_from_config(write_files, fake_docdex: FakeDocdex) -> None:
    root = write_files({"librarian.yaml": "librarian:\n  serialization_mode: json\n"})

    result = CliRunner().invoke(
        app,
        ["assemble", "fix the login handler", "--workspace", str(root), "--config", str(root / "librarian.yaml")],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert '"mode": "json"' in result.output


def test_assemble_deep_mode_exits_with_remediation(tmp_path: Path, fake_docdex: FakeDocdex) -> None:
    fake_docdex.stats_payload = {"num_docs": 0, "last_updated_epoch_ms": 0}

    result = CliRunner().invoke(
        app,
        ["assemble", "fix the login handler", "--deep", "--workspace", str(tmp_path), "--config", str(tmp_path / "absent.yaml")],
        catch_exceptions=False,
    )

    assert result.exit_code == 2
    assert "Deep investigation blocked:" in result.output
    assert "- missing: docdex_index_empty" in result.output
    assert "- missing: docdex_index_stale" in result.output
    assert "- remediation: " in result.output


def test_assemble_rejects_unknown_mode(tmp_path: Path, fake_docdex: FakeDocdex) -> None:
    result = CliRunner().invoke(
        app,
        ["assemble", "anything", "--mode", "yaml", "--workspace", str(tmp_path), "--config", str(tmp_path / "absent.yaml")],
    )

    assert result.exit_code == 2
    assert fake_docdex.calls == []


def test_invalid_config_exits(tmp_path: Path, fake_docdex: FakeDocdex) -> None:
    config_path = tmp_path / "librarian.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["assemble", "anything", "--workspace", str(tmp_path), "--config", str(config_path)],
        catch_exceptions=False,
    )

    assert result.exit_code == 1
    assert "mapping" in result.output
