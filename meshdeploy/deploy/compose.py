"""
docker-compose.yml generation.

The file describes a single `meshcentral` service whose published host
ports come from the saved PortConfig.
"""

from pathlib import Path

import yaml

from meshdeploy.deploy.settings import (
    CONTAINER_AGENT_PORT,
    CONTAINER_HTTP_PORT,
    CONTAINER_HTTPS_PORT,
    CONTAINER_WEBRTC_PORT,
    DATA_DIRS,
    Paths,
    PortConfig,
    Settings,
)
from meshdeploy.security.exceptions import ConfigError

SERVICE_NAME = "meshcentral"
CONTAINER_ROOT = "/opt/meshcentral"


def build_compose(settings: Settings, ports: PortConfig) -> dict:
    """Compose document as plain data."""
    service = {
        "image": settings.image,
        "container_name": settings.container_name,
        "restart": "always",
        "ports": [
            f"{ports.http}:{CONTAINER_HTTP_PORT}",
            f"{ports.https}:{CONTAINER_HTTPS_PORT}",
            f"{ports.agent}:{CONTAINER_AGENT_PORT}",
            f"{ports.webrtc}:{CONTAINER_WEBRTC_PORT}",
        ],
        "environment": [
            f"TZ={settings.timezone}",
            "NODE_ENV=production",
        ],
        "volumes": [f"./{name}:{CONTAINER_ROOT}/{name}" for name in DATA_DIRS],
        "healthcheck": {
            "test": ["CMD", "curl", "-f", f"http://localhost:{CONTAINER_HTTP_PORT}/"],
            "interval": "30s",
            "timeout": "10s",
            "retries": 3,
            "start_period": "40s",
        },
    }
    return {"services": {SERVICE_NAME: service}}


def render_compose(settings: Settings, ports: PortConfig) -> str:
    return yaml.safe_dump(build_compose(settings, ports), sort_keys=False, default_flow_style=False)


def write_compose(paths: Paths, settings: Settings, ports: PortConfig) -> Path:
    paths.install_dir.mkdir(parents=True, exist_ok=True)
    paths.compose_file.write_text(render_compose(settings, ports), encoding="utf-8")
    return paths.compose_file


def read_compose(paths: Paths) -> dict:
    """
    Parse the existing compose file; empty dict when absent.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or is not a mapping.
    """
    if not paths.compose_file.exists():
        return {}
    try:
        with open(paths.compose_file, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read {paths.compose_file}: {e}") from e
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"{paths.compose_file} is not a compose mapping")
    return document


def configured_image(paths: Paths, default: str) -> str:
    """Image of the meshcentral service in the compose file, else default."""
    try:
        document = read_compose(paths)
    except ConfigError:
        return default
    services = document.get("services")
    service = services.get(SERVICE_NAME) if isinstance(services, dict) else None
    image = service.get("image") if isinstance(service, dict) else None
    return image if isinstance(image, str) and image else default
