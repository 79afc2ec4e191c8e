"""
meshdeploy Command Runner - Permission-gated subprocess wrapper

Every external command the tool issues goes through this wrapper.
Validates against the program allowlist, logs every call, and executes
(or records, in dry-run mode).

Usage:
    from meshdeploy.security import CommandRunner, ComposeController

    runner = CommandRunner(dry_run=True)
    compose = ComposeController(runner, Path("/opt/meshcentral"))
    compose.up()
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from meshdeploy.security.allowlist import ALLOWED_PROGRAMS, COMPOSE_ACTIONS, is_compose_action
from meshdeploy.security.audit import ATTEMPT, DENIED, ERROR, SUCCESS, AuditLogger
from meshdeploy.security.exceptions import AllowlistError, CommandError, PrerequisiteError

COMPOSE_FILE = "docker-compose.yml"

# Verbs that do not read the project's compose file
PROJECTLESS_ACTIONS = frozenset(["version"])


@dataclass
class CommandResult:
    """Outcome of one external command."""
    argv: list[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Permission-gated command runner.

    Every call passes through:
    1. Program allowlist check
    2. Audit logging (before and after)
    3. Execution (subprocess, or a recorded no-op in dry_run)
    """

    def __init__(
        self,
        dry_run: bool = False,
        audit_dir: str | Path | None = None,
        echo=None,
    ):
        """
        Args:
            dry_run: If True, record commands instead of executing them.
            audit_dir: Directory for audit logs. Defaults to ./logs/meshdeploy/.
            echo: Optional callable receiving each command line before it runs.
        """
        self.dry_run = dry_run
        self.audit = AuditLogger(log_dir=audit_dir)
        self.echo = echo
        self.history: list[list[str]] = []

    def run(
        self,
        argv: list[str],
        cwd: str | Path | None = None,
        check: bool = True,
        capture: bool = False,
        input: str | bytes | None = None,
        env: dict | None = None,
    ) -> CommandResult:
        """
        Main entry point for external commands.

        Args:
            argv: Program and arguments. argv[0] must be in ALLOWED_PROGRAMS.
            cwd: Working directory for the command.
            check: Raise CommandError on a non-zero exit code.
            capture: Capture stdout/stderr instead of inheriting the terminal.
            input: Data written to the command's stdin.
            env: Environment for the child process.

        Returns:
            CommandResult with exit code and captured output.

        Raises:
            AllowlistError: If the program is not permitted.
            CommandError: If the program is missing, or fails with check=True.
        """
        argv = [str(a) for a in argv]
        params = " ".join(argv)

        self.audit.log(ATTEMPT, "run", params)

        try:
            self._validate_program(argv)
            if self.echo:
                self.echo(params)

            result = self._execute(argv, cwd=cwd, capture=capture, input=input, env=env)

            if check and not result.ok:
                raise CommandError(
                    f"Command failed with exit code {result.returncode}: {params}",
                    argv=argv,
                    returncode=result.returncode,
                    stderr=result.stderr,
                )

            self.audit.log(SUCCESS if result.ok else ERROR, "run", params,
                           error=None if result.ok else f"exit {result.returncode}")
            return result

        except AllowlistError as e:
            self.audit.log(DENIED, "run", params, error=str(e))
            raise

        except Exception as e:
            self.audit.log(ERROR, "run", params, error=str(e))
            raise

    def which(self, program: str) -> bool:
        """Check whether a program is available on PATH."""
        return shutil.which(program) is not None

    def _validate_program(self, argv: list[str]) -> None:
        """Check that the program is in the allowlist."""
        if not argv:
            raise AllowlistError("Empty command")
        program = argv[0]
        if program not in ALLOWED_PROGRAMS:
            raise AllowlistError(
                f"Program '{program}' not in allowlist. "
                f"Allowed: {sorted(ALLOWED_PROGRAMS)}"
            )

    def _execute(self, argv, cwd=None, capture=False, input=None, env=None) -> CommandResult:
        """
        Execute the command via subprocess.

        In dry_run, records the command and returns a successful stub.
        """
        self.history.append(argv)

        if self.dry_run:
            return CommandResult(argv=argv)

        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                capture_output=capture,
                text=not isinstance(input, bytes),
                input=input,
                env=env,
            )
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {argv[0]}", argv=argv) from e

        stdout = proc.stdout or ""
        stderr = proc.stderr or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode("utf-8", errors="replace")
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")

        return CommandResult(argv=argv, returncode=proc.returncode, stdout=stdout, stderr=stderr)


class ComposeController:
    """
    `docker compose` lifecycle verbs, run from the install directory.

    Only verbs in COMPOSE_ACTIONS are issued, and only against the compose
    file in project_dir: without it nothing runs, so a stray
    docker-compose.yml in the caller's directory is never touched.
    """

    def __init__(self, runner: CommandRunner, project_dir: str | Path, compose_file: str = COMPOSE_FILE):
        self.runner = runner
        self.project_dir = Path(project_dir)
        self.compose_file = self.project_dir / compose_file

    def compose(self, action: str, *args: str, check: bool = True, capture: bool = False) -> CommandResult:
        """
        Run `docker compose <action> [args]` in the project directory.

        Raises:
            AllowlistError: If the verb is not permitted.
            PrerequisiteError: If the project has no compose file yet.
        """
        if not is_compose_action(action):
            self.runner.audit.log(DENIED, "compose", action)
            raise AllowlistError(
                f"Compose action '{action}' not in allowlist. "
                f"Allowed: {sorted(COMPOSE_ACTIONS)}"
            )
        cwd = None
        if action not in PROJECTLESS_ACTIONS:
            if not self.compose_file.is_file():
                raise PrerequisiteError(f"MeshCentral is not installed: {self.compose_file} not found")
            cwd = self.project_dir
        return self.runner.run(["docker", "compose", action, *args], cwd=cwd, check=check, capture=capture)

    def up(self) -> CommandResult:
        return self.compose("up", "-d")

    def down(self, check: bool = True) -> CommandResult:
        return self.compose("down", check=check)

    def pull(self) -> CommandResult:
        return self.compose("pull")

    def restart(self) -> CommandResult:
        return self.compose("restart")

    def logs(self, follow: bool = True, tail: int = 100) -> CommandResult:
        args = ["--tail", str(tail)]
        if follow:
            args.insert(0, "-f")
        return self.compose("logs", *args, check=False)

    def version(self) -> CommandResult:
        return self.compose("version", check=False, capture=True)

    # Plain `docker` calls against the container itself

    def container_names(self, all: bool = False) -> list[str]:
        """Names of running (or all) containers; empty when docker fails or is missing."""
        argv = ["docker", "ps", "--format", "{{.Names}}"]
        if all:
            argv.append("-a")
        try:
            result = self.runner.run(argv, check=False, capture=True)
        except CommandError:
            return []
        if not result.ok:
            return []
        return result.stdout.split()

    def is_running(self, name: str) -> bool:
        return name in self.container_names()

    def exists(self, name: str) -> bool:
        return name in self.container_names(all=True)

    def restart_container(self, name: str) -> CommandResult:
        return self.runner.run(["docker", "restart", name])

    def remove_container(self, name: str) -> CommandResult:
        return self.runner.run(["docker", "rm", "-f", name], check=False)
