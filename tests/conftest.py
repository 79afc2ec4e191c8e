import io

import pytest

from meshdeploy.console import Console
from meshdeploy.deploy import host
from meshdeploy.deploy.lifecycle import Deployment
from meshdeploy.deploy.settings import Settings
from meshdeploy.security.wrapper import CommandResult, CommandRunner


class ScriptedRunner(CommandRunner):
    """
    CommandRunner that answers from a table instead of running anything.

    responses maps an argv prefix (tuple) to (returncode, stdout).
    The longest matching prefix wins; unmatched commands succeed silently.
    """

    def __init__(self, audit_dir, responses=None, available=("docker", "ufw")):
        super().__init__(dry_run=False, audit_dir=audit_dir)
        self.responses = dict(responses or {})
        self.available = set(available)
        self.inputs = []
        self.cwds = []

    def which(self, program):
        return program in self.available

    def _execute(self, argv, cwd=None, capture=False, input=None, env=None):
        self.history.append(argv)
        self.inputs.append(input)
        self.cwds.append(cwd)
        best = None
        for prefix in self.responses:
            if tuple(argv[:len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(argv=argv)
        code, out = self.responses[best]
        return CommandResult(argv=argv, returncode=code, stdout=out)

    def ran(self, *prefix) -> bool:
        return any(tuple(argv[:len(prefix)]) == prefix for argv in self.history)


class ScriptedInput:
    """input() replacement fed from a list of answers."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt=""):
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {prompt!r}")
        return self.answers.pop(0)


def make_console(*answers):
    stream = io.StringIO()
    return Console(input_func=ScriptedInput(answers), stream=stream, color=False), stream


RUNNING = {("docker", "ps", "--format", "{{.Names}}"): (0, "meshcentral\n")}

PUBLIC_IP = "203.0.113.10"


@pytest.fixture(autouse=True)
def no_network(monkeypatch):
    """Address detection never leaves the test process."""
    monkeypatch.setattr(host, "public_ip", lambda timeout=5: PUBLIC_IP)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        install_dir=tmp_path / "meshcentral",
        audit_dir=tmp_path / "audit",
        first_start_wait=0,
        startup_wait=0,
        restart_wait=0,
    )


@pytest.fixture
def runner(tmp_path):
    return ScriptedRunner(tmp_path / "audit", responses=RUNNING)


@pytest.fixture
def deployment_factory(settings, runner):
    """Build a Deployment whose prompts are answered by `answers`."""
    def build(*answers, runner=runner):
        console, stream = make_console(*answers)
        deployment = Deployment(settings, runner, console, sleep=lambda s: None)
        deployment.output = stream
        return deployment
    return build
