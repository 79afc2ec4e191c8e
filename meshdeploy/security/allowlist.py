"""
meshdeploy Allowlists

Immutable sets of permitted programs and compose verbs.
If it's not explicitly listed here, the runner refuses to execute it.
"""

# Host programs the tool is allowed to invoke
ALLOWED_PROGRAMS: frozenset[str] = frozenset([
    "apt-get",
    "docker",
    "dpkg",
    "gpg",
    "hostname",
    "ss",
    "systemctl",
    "ufw",
])

# `docker compose` subcommands used for the service lifecycle
COMPOSE_ACTIONS: frozenset[str] = frozenset([
    "up",
    "down",
    "pull",
    "restart",
    "logs",
    "ps",
    "version",
])

# Never issued through the compose wrapper
BLOCKED_ACTIONS: frozenset[str] = frozenset([
    "exec",
    "run",
    "rm",
    "kill",
])


def is_allowed(program: str) -> bool:
    """Check if a program may be executed."""
    return program in ALLOWED_PROGRAMS


def is_compose_action(action: str) -> bool:
    return action in COMPOSE_ACTIONS and action not in BLOCKED_ACTIONS
