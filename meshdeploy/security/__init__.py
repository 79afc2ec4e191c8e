"""
meshdeploy Security Module - Host command boundaries

Controls for every command the deployment tool runs on the host:
- Explicit allowlists (frozenset, immutable)
- Audit logging with secret redaction
- Dry-run mode that records instead of executing

Usage:
    from meshdeploy.security import CommandRunner

    runner = CommandRunner(dry_run=True)
    result = runner.run(["docker", "ps"])
"""

from meshdeploy.security.wrapper import CommandResult, CommandRunner, ComposeController

__all__ = ["CommandResult", "CommandRunner", "ComposeController"]
