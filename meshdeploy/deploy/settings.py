"""
Deployment settings - ports, paths and runtime configuration.

The port choice is persisted next to the deployment in `.ports_config`
(shell KEY=VALUE lines, readable with `source`), the chosen access
address in `.configured_domain`.

Runtime settings resolve in this order: code defaults, MESHDEPLOY_*
environment variables (optionally from a .env file), CLI flags.
"""

import os
from dataclasses import dataclass, fields, replace as dc_replace
from pathlib import Path

from dotenv import dotenv_values

from meshdeploy.security.exceptions import ConfigError

DEFAULT_INSTALL_DIR = Path("/opt/meshcentral")
DEFAULT_CONTAINER_NAME = "meshcentral"
DEFAULT_IMAGE = "ghcr.io/ylianst/meshcentral:latest"
DEFAULT_TIMEZONE = "Asia/Shanghai"
DEFAULT_AUDIT_DIR = Path("/var/log/meshdeploy")

# Container-side ports, fixed by the image
CONTAINER_HTTP_PORT = 80
CONTAINER_HTTPS_PORT = 443
CONTAINER_AGENT_PORT = 4433
CONTAINER_WEBRTC_PORT = 8443

DATA_DIRS = ("meshcentral-data", "meshcentral-files", "meshcentral-backups", "meshcentral-web")

_PORT_KEYS = {
    "http": "HTTP_PORT",
    "https": "HTTPS_PORT",
    "agent": "AGENT_PORT",
    "webrtc": "WEBRTC_PORT",
}


def validate_port(value, name: str = "port") -> int:
    """Parse a TCP port number, 1-65535."""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value!r} is not a number") from None
    if not 1 <= port <= 65535:
        raise ConfigError(f"Invalid {name}: {port} is outside 1-65535")
    return port


@dataclass(frozen=True)
class PortConfig:
    """Host ports published for the four container ports."""
    http: int = CONTAINER_HTTP_PORT
    https: int = CONTAINER_HTTPS_PORT
    agent: int = CONTAINER_AGENT_PORT
    webrtc: int = CONTAINER_WEBRTC_PORT

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, validate_port(getattr(self, f.name), _PORT_KEYS[f.name]))

    @classmethod
    def from_mapping(cls, values) -> "PortConfig":
        """Build from HTTP_PORT=... style keys. Missing or blank keys keep defaults."""
        kwargs = {}
        for attr, key in _PORT_KEYS.items():
            raw = values.get(key)
            if raw is None or str(raw).strip() == "":
                continue
            kwargs[attr] = raw
        return cls(**kwargs)

    def to_mapping(self) -> dict[str, str]:
        return {key: str(getattr(self, attr)) for attr, key in _PORT_KEYS.items()}

    def replace(self, **changes) -> "PortConfig":
        return dc_replace(self, **changes)

    def as_list(self) -> list[int]:
        return [self.http, self.https, self.agent, self.webrtc]

    @property
    def https_alias(self) -> int | None:
        """Public HTTPS port when it differs from the container's 443."""
        return None if self.https == CONTAINER_HTTPS_PORT else self.https

    @property
    def agent_alias(self) -> int | None:
        """Public agent port when it differs from the container's 4433."""
        return None if self.agent == CONTAINER_AGENT_PORT else self.agent


@dataclass(frozen=True)
class Paths:
    """Every file and directory derived from the install directory."""
    install_dir: Path

    @property
    def compose_file(self) -> Path:
        return self.install_dir / "docker-compose.yml"

    @property
    def data_dir(self) -> Path:
        return self.install_dir / "meshcentral-data"

    @property
    def files_dir(self) -> Path:
        return self.install_dir / "meshcentral-files"

    @property
    def backups_dir(self) -> Path:
        return self.install_dir / "meshcentral-backups"

    @property
    def web_dir(self) -> Path:
        return self.install_dir / "meshcentral-web"

    @property
    def config_file(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def ports_file(self) -> Path:
        return self.install_dir / ".ports_config"

    @property
    def domain_file(self) -> Path:
        return self.install_dir / ".configured_domain"

    def data_dirs(self) -> list[Path]:
        return [self.install_dir / name for name in DATA_DIRS]


@dataclass
class Settings:
    """Runtime configuration for one invocation."""
    install_dir: Path = DEFAULT_INSTALL_DIR
    container_name: str = DEFAULT_CONTAINER_NAME
    image: str = DEFAULT_IMAGE
    timezone: str = DEFAULT_TIMEZONE
    audit_dir: Path = DEFAULT_AUDIT_DIR
    first_start_wait: float = 15
    startup_wait: float = 30
    restart_wait: float = 20
    dry_run: bool = False
    debug: bool = False

    @property
    def paths(self) -> Paths:
        return Paths(Path(self.install_dir))


# Environment variable -> (Settings attribute, converter)
_ENV_KEYS = {
    "MESHDEPLOY_INSTALL_DIR": ("install_dir", Path),
    "MESHDEPLOY_CONTAINER_NAME": ("container_name", str),
    "MESHDEPLOY_IMAGE": ("image", str),
    "MESHDEPLOY_TZ": ("timezone", str),
    "MESHDEPLOY_AUDIT_DIR": ("audit_dir", Path),
    "MESHDEPLOY_FIRST_START_WAIT": ("first_start_wait", float),
    "MESHDEPLOY_STARTUP_WAIT": ("startup_wait", float),
    "MESHDEPLOY_RESTART_WAIT": ("restart_wait", float),
}


def load_settings(env=None, **overrides) -> Settings:
    """
    Resolve runtime settings.

    Args:
        env: Mapping of environment variables. Defaults to os.environ.
        **overrides: Values from the command line; None entries are ignored.

    Returns:
        Settings instance.
    """
    env = os.environ if env is None else env
    values = {}
    for key, (attr, convert) in _ENV_KEYS.items():
        raw = env.get(key)
        if raw in (None, ""):
            continue
        try:
            values[attr] = convert(raw)
        except ValueError:
            raise ConfigError(f"Invalid value for {key}: {raw!r}") from None
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)


def load_ports(paths: Paths) -> PortConfig:
    """Read the saved port mapping; defaults when nothing was saved."""
    if not paths.ports_file.exists():
        return PortConfig()
    return PortConfig.from_mapping(dotenv_values(paths.ports_file))


def save_ports(paths: Paths, ports: PortConfig) -> None:
    paths.install_dir.mkdir(parents=True, exist_ok=True)
    lines = [f"{key}={value}" for key, value in ports.to_mapping().items()]
    paths.ports_file.write_text("\n".join(lines) + "\n", encoding="utf-8")


def load_domain(paths: Paths) -> str | None:
    """The access address saved by the last successful domain configuration."""
    if not paths.domain_file.exists():
        return None
    domain = paths.domain_file.read_text(encoding="utf-8").strip()
    return domain or None


def save_domain(paths: Paths, domain: str) -> None:
    paths.install_dir.mkdir(parents=True, exist_ok=True)
    paths.domain_file.write_text(domain.strip() + "\n", encoding="utf-8")
