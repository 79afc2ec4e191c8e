"""
meshdeploy Exceptions

Error types raised by the deployment tool.
Every failure class is a distinct exception type for precise handling and audit logging.
"""


class DeployError(Exception):
    """Base exception for everything the tool raises on purpose."""
    pass


class ConfigError(DeployError):
    """Raised for invalid ports or an unreadable config.json."""
    pass


class PrerequisiteError(DeployError):
    """Raised when the host is not ready (not root, no Docker, user abort)."""
    pass


class AllowlistError(DeployError):
    """Raised when a program or compose verb is not in the allowlist."""
    pass


class AuditError(DeployError):
    """Raised when the audit log cannot be written."""
    pass


class CommandError(DeployError):
    """Raised when an external command fails or cannot be started."""

    def __init__(self, message: str, argv: list[str] | None = None, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.argv = list(argv or [])
        self.returncode = returncode
        self.stderr = stderr
