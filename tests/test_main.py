"""
Tests for the command line entry point, run in dry-run mode.
"""

import io

import pytest

from meshdeploy.console import Console
from meshdeploy.deploy import host
from meshdeploy.main import build_parser, main

from conftest import make_console


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run main() against a temporary install dir; returns (exit code, output)."""
    monkeypatch.chdir(tmp_path)
    for key in ("MESHDEPLOY_INSTALL_DIR", "MESHDEPLOY_AUDIT_DIR", "MESHDEPLOY_STARTUP_WAIT"):
        monkeypatch.delenv(key, raising=False)

    def run(*argv, answers=(), root_check=False):
        console, stream = make_console(*answers)
        base = ["--dry-run", "--install-dir", str(tmp_path / "mesh"), "--audit-dir", str(tmp_path / "audit")]
        if not root_check:
            base.append("--skip-root-check")
        code = main([*base, *argv], console=console)
        return code, stream.getvalue()

    return run


def audit_text(tmp_path):
    return (tmp_path / "audit" / "audit.log").read_text()


def installed(tmp_path):
    (tmp_path / "mesh").mkdir(exist_ok=True)
    (tmp_path / "mesh" / "docker-compose.yml").write_text("services: {}\n")


class TestParser:
    def test_default_is_interactive(self):
        args = build_parser().parse_args([])
        assert args.command is None
        assert args.dry_run is False

    def test_ports_flags(self):
        args = build_parser().parse_args(["ports", "--https", "8443"])
        assert args.https == 8443
        assert args.http is None

    def test_tune_rejects_unknown_option(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["tune", "9"])


class TestMain:
    def test_info(self, cli, tmp_path):
        code, out = cli("info")
        assert code == 0
        assert "MeshCentral configuration" in out
        assert "Container status: stopped" in out
        assert "|SUCCESS|dispatch|" in audit_text(tmp_path)

    def test_interactive_decline_install(self, cli):
        code, out = cli(answers=["n"])
        assert code == 0
        assert "No MeshCentral installation detected" in out
        assert "Installation cancelled" in out

    def test_ports_saved(self, cli, tmp_path):
        code, _ = cli("ports", "--https", "8443")
        assert code == 0
        assert "HTTPS_PORT=8443" in (tmp_path / "mesh" / ".ports_config").read_text()

    def test_invalid_port_reported(self, cli):
        code, out = cli("ports", "--http", "70000")
        assert code == 1
        assert "[ERROR] Invalid HTTP_PORT" in out

    def test_logs_recorded(self, cli, tmp_path):
        installed(tmp_path)
        code, _ = cli("logs", "--no-follow", "--tail", "20")
        assert code == 0
        assert "docker compose logs --tail 20" in audit_text(tmp_path)

    def test_audit_listing(self, cli, tmp_path):
        installed(tmp_path)
        cli("start")
        code, out = cli("audit", "-n", "50")
        assert code == 0
        assert "docker compose up -d" in out

    def test_root_required(self, cli, monkeypatch):
        monkeypatch.setattr(host.os, "geteuid", lambda: 1000)
        code, out = cli("info", root_check=True)
        assert code == 1
        assert "run as root" in out

    def test_bad_environment(self, cli, monkeypatch):
        monkeypatch.setenv("MESHDEPLOY_STARTUP_WAIT", "later")
        code, out = cli("info")
        assert code == 1
        assert "MESHDEPLOY_STARTUP_WAIT" in out

    def test_keyboard_interrupt(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        def interrupted(prompt=""):
            raise KeyboardInterrupt

        console = Console(input_func=interrupted, stream=io.StringIO(), color=False)
        code = main(["--dry-run", "--skip-root-check", "--install-dir", str(tmp_path / "mesh"),
                     "--audit-dir", str(tmp_path / "audit")], console=console)
        assert code == 130

    def test_closed_stdin(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        def closed(prompt=""):
            raise EOFError

        stream = io.StringIO()
        console = Console(input_func=closed, stream=stream, color=False)
        code = main(["--dry-run", "--skip-root-check", "--install-dir", str(tmp_path / "mesh"),
                     "--audit-dir", str(tmp_path / "audit")], console=console)
        assert code == 130
        assert "Traceback" not in stream.getvalue()

    def test_not_installed_stop(self, cli, tmp_path):
        code, out = cli("stop")
        assert code == 1
        assert "MeshCentral is not installed" in out
        assert "docker compose down" not in audit_text(tmp_path)
