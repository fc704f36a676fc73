"""Tests for the self-update and handoff commands."""

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from conftest import FakeCDN, sha256_hex

from realmsync.commands.handoff import handoff
from realmsync.commands.self_update import self_update
from realmsync.core.config import HandoffConfig

LAUNCHER_URL = "https://cdn.test/launcher.json"
EXE_URL = "https://cdn.test/ARLauncher.exe"


@pytest.fixture
def runner(cdn: FakeCDN):
    with patch("realmsync.core.self_update.create_http_client", side_effect=lambda _config: cdn.client()):
        yield CliRunner()


@pytest.fixture
def executable(tmp_path: Path) -> Path:
    exe = tmp_path / "ARLauncher.exe"
    exe.write_bytes(b"old")
    return exe


def _console_text(cli_context) -> str:
    return cli_context["console"].file.getvalue()


class TestSelfUpdateCommand:
    """Test self-update command."""

    def test_up_to_date(self, cdn: FakeCDN, runner, cli_context, executable):
        cdn.add_json(LAUNCHER_URL, {"version": "1.0.0", "url": EXE_URL, "sha256": "00" * 32})

        result = runner.invoke(self_update, ["--executable", str(executable)], obj=cli_context)

        assert result.exit_code == 0
        assert "Launcher 1.0.0 is up to date." in _console_text(cli_context)

    def test_check_only(self, cdn: FakeCDN, runner, cli_context, executable):
        cdn.add_json(LAUNCHER_URL, {"version": "1.5.0", "url": EXE_URL, "sha256": "00" * 32})

        result = runner.invoke(self_update, ["--check-only", "--executable", str(executable)], obj=cli_context)

        assert result.exit_code == 0
        assert "A launcher update is available." in _console_text(cli_context)
        assert cdn.requests_for(EXE_URL) == []

    def test_verification_failure_exits_1(self, cdn: FakeCDN, runner, cli_context, executable):
        cdn.add(EXE_URL, b"new")
        cdn.add_json(LAUNCHER_URL, {"version": "1.5.0", "url": EXE_URL, "sha256": "00" * 32})

        result = runner.invoke(self_update, ["--executable", str(executable)], obj=cli_context)

        assert result.exit_code == 1
        assert "Self-update aborted" in _console_text(cli_context)
        assert executable.read_bytes() == b"old"

    def test_download_failure_exits_1(self, cdn: FakeCDN, runner, cli_context, executable):
        cdn.add_json(LAUNCHER_URL, {"version": "1.5.0", "url": EXE_URL, "sha256": "00" * 32})

        result = runner.invoke(self_update, ["--executable", str(executable)], obj=cli_context)
        assert result.exit_code == 1

    def test_update_hands_off_and_exits(self, cdn: FakeCDN, runner, cli_context, executable):
        cdn.add(EXE_URL, b"new")
        cdn.add_json(LAUNCHER_URL, {"version": "1.5.0", "url": EXE_URL, "sha256": sha256_hex(b"new")})

        with patch("realmsync.core.self_update.launch_detached") as mock_launch:
            result = runner.invoke(self_update, ["--executable", str(executable)], obj=cli_context)

        assert result.exit_code == 0
        command = mock_launch.call_args.args[0]
        assert "swap" in command
        assert command[command.index("--target") + 1] == str(executable)

    def test_requires_executable_from_source(self, runner, cli_context):
        result = runner.invoke(self_update, [], obj=cli_context)
        assert result.exit_code == 2
        assert "--executable is required" in _console_text(cli_context)


class TestHandoffCommand:
    """Test the hidden handoff helper commands."""

    def test_swap(self, tmp_path: Path):
        source = tmp_path / "new.exe"
        target = tmp_path / "ARLauncher.exe"

        with patch("realmsync.commands.handoff.swap_and_relaunch", return_value=True) as mock_swap:
            result = CliRunner().invoke(handoff, [
                "swap", "--pid", "12", "--source", str(source), "--target", str(target),
                "--startup-delay", "0", "--attempts", "3",
            ])

        assert result.exit_code == 0
        pid, src, dst, config = mock_swap.call_args.args
        assert (pid, src, dst) == (12, source, target)
        assert config == HandoffConfig(startup_delay=0, max_attempts=3)

    def test_swap_failure(self, tmp_path: Path):
        with patch("realmsync.commands.handoff.swap_and_relaunch", return_value=False):
            result = CliRunner().invoke(handoff, [
                "swap", "--pid", "12", "--source", str(tmp_path / "a"), "--target", str(tmp_path / "b"),
            ])
        assert result.exit_code == 1

    def test_mirror(self, tmp_path: Path):
        with patch("realmsync.commands.handoff.mirror_and_relaunch", return_value=True) as mock_mirror:
            result = CliRunner().invoke(handoff, [
                "mirror", "--pid", "12",
                "--source", str(tmp_path / "scratch"),
                "--target", str(tmp_path),
                "--relaunch", str(tmp_path / "ARLauncher.exe"),
                "--exclude", "launcher.cfg",
                "--exclude", "user.ini",
            ])

        assert result.exit_code == 0
        args = mock_mirror.call_args.args
        assert args[3] == tmp_path / "ARLauncher.exe"
        assert args[4] == ("launcher.cfg", "user.ini")

    def test_mirror_end_to_end(self, tmp_path: Path):
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        (scratch / "ARLauncher.exe").write_bytes(b"new")
        (scratch / "launcher.cfg").write_bytes(b"packaged")
        target = tmp_path / "app"
        target.mkdir()
        (target / "launcher.cfg").write_bytes(b"mine")

        with patch("realmsync.core.handoff.wait_for_parent", return_value=True), \
                patch("realmsync.core.handoff.launch_detached") as mock_launch:
            result = CliRunner().invoke(handoff, [
                "mirror", "--pid", "12",
                "--source", str(scratch),
                "--target", str(target),
                "--relaunch", str(target / "ARLauncher.exe"),
                "--exclude", "launcher.cfg",
                "--startup-delay", "0", "--retry-delay", "0",
            ])

        assert result.exit_code == 0
        assert (target / "ARLauncher.exe").read_bytes() == b"new"
        assert (target / "launcher.cfg").read_bytes() == b"mine"
        assert not scratch.exists()
        mock_launch.assert_called_once()
