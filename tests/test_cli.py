"""Tests for the typer CLI."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from typer.testing import CliRunner

from donorhub import cli
from donorhub import config as config_module
from donorhub.models import FileDescriptor, LogicalCategory, UploadConfig, UploadResult
from donorhub.upload.exceptions import TransferRejected
from donorhub.upload.session import SessionEntry

runner = CliRunner()


@pytest.fixture
def png(tmp_path):
    path = tmp_path / "a.png"
    path.write_bytes(b"\x89PNG" + b"\0" * 60)
    return path


class TestCategories:
    def test_lists_every_category(self):
        result = runner.invoke(cli.app, ["categories"])
        assert result.exit_code == 0
        for category in LogicalCategory:
            assert category.value in result.output
        assert "10 MiB" in result.output
        assert "15 MiB" in result.output


class TestConfigCommands:
    def test_set_token(self, monkeypatch):
        stored = {}
        monkeypatch.setattr(
            config_module.keyring,
            "set_password",
            lambda service, key, value: stored.update({(service, key): value}),
        )
        result = runner.invoke(cli.app, ["config", "set-token", "secret"])
        assert result.exit_code == 0
        assert stored == {("donorhub", "auth_token"): "secret"}


class TestUploadCommand:
    def test_missing_token_exits_1(self, monkeypatch, png, tmp_path):
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: None)
        monkeypatch.delenv("DONORHUB_TOKEN", raising=False)
        result = runner.invoke(
            cli.app,
            ["upload", str(png), "-c", "blog-image", "--config", str(tmp_path / "none.json")],
        )
        assert result.exit_code == 1
        assert "Auth token not found" in result.output

    def test_unknown_category_rejected(self, png):
        result = runner.invoke(cli.app, ["upload", str(png), "-c", "selfie"])
        assert result.exit_code != 0

    def test_summary_and_exit_code(self, monkeypatch, png, tmp_path):
        monkeypatch.setenv("DONORHUB_TOKEN", "tok")
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: None)
        seen = {}

        async def fake_run(files, category, config, token):
            seen.update(category=category, config=config, token=token)
            descriptor = FileDescriptor("a.png", 64, "image/png", io.BytesIO())
            return [
                SessionEntry(
                    success=True,
                    file_descriptor=descriptor,
                    category=category,
                    task_id="t1",
                    result=UploadResult("https://cdn.test/a.png", "blog-image/1-a.png"),
                ),
                SessionEntry(
                    success=False,
                    file_descriptor=descriptor,
                    category=category,
                    task_id="t2",
                    error=TransferRejected(403, "https://storage.test"),
                ),
            ]

        monkeypatch.setattr(cli, "_run_upload", fake_run)
        result = runner.invoke(
            cli.app,
            [
                "upload",
                str(png),
                "-c",
                "blog-image",
                "-n",
                "2",
                "--origin",
                "https://api.example.org",
                "--config",
                str(tmp_path / "none.json"),
            ],
        )
        assert result.exit_code == 1
        assert "1 succeeded, 1 failed" in result.output
        assert seen["token"] == "tok"
        assert seen["category"] is LogicalCategory.BLOG_IMAGE
        assert seen["config"].max_concurrent_uploads == 2
        assert seen["config"].origin_url == "https://api.example.org"


class TestReconcileCommand:
    def test_no_ledger_is_noop(self, tmp_path):
        result = runner.invoke(
            cli.app,
            ["reconcile", "--ledger", str(tmp_path / "absent.db")],
        )
        assert result.exit_code == 0
        assert "Nothing to reconcile" in result.output


class TestLedgerDefault:
    """upload records unconfirmed objects where reconcile looks for them."""

    @pytest.fixture
    def captured(self, monkeypatch):
        monkeypatch.setenv("DONORHUB_TOKEN", "tok")
        monkeypatch.setattr(config_module.keyring, "get_password", lambda s, k: None)
        seen = {}

        async def fake_run(files, category, config, token):
            seen["config"] = config
            return []

        monkeypatch.setattr(cli, "_run_upload", fake_run)
        return seen

    def test_upload_uses_default_ledger(self, captured, png, tmp_path):
        result = runner.invoke(
            cli.app,
            ["upload", str(png), "-c", "blog-image", "--config", str(tmp_path / "none.json")],
        )
        assert result.exit_code == 0
        assert Path(captured["config"].ledger_path) == cli.DEFAULT_LEDGER_PATH
        assert cli._ledger_path(UploadConfig()) == cli.DEFAULT_LEDGER_PATH

    def test_upload_ledger_option(self, captured, png, tmp_path):
        ledger = tmp_path / "ledger.db"
        result = runner.invoke(
            cli.app,
            [
                "upload",
                str(png),
                "-c",
                "blog-image",
                "--ledger",
                str(ledger),
                "--config",
                str(tmp_path / "none.json"),
            ],
        )
        assert result.exit_code == 0
        assert captured["config"].ledger_path == str(ledger)
