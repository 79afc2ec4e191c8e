"""
ufw rules for the published ports.
"""

from meshdeploy.deploy.settings import PortConfig
from meshdeploy.security.wrapper import CommandRunner

# Always opened alongside the service ports so the host stays reachable
SSH_PORT = 22


def rules_for(ports: PortConfig) -> list[str]:
    return [f"{port}/tcp" for port in [*ports.as_list(), SSH_PORT]]


def open_ports(runner: CommandRunner, ports: PortConfig) -> list[str]:
    """`ufw allow` each service port plus SSH. Returns the rules added."""
    rules = rules_for(ports)
    for rule in rules:
        runner.run(["ufw", "allow", rule])
    return rules


def status(runner: CommandRunner) -> str:
    return runner.run(["ufw", "status"], check=False, capture=True).stdout


def is_active(runner: CommandRunner) -> bool:
    return "Status: active" in status(runner)


def enable(runner: CommandRunner) -> None:
    runner.run(["ufw", "--force", "enable"])
