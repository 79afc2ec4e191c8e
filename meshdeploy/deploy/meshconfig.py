"""
MeshCentral config.json patches.

Every patch mutates the document in place, returns it, and is idempotent:
applying it twice leaves the same document as applying it once. Keys the
patch does not own are left alone.

Usage:
    from meshdeploy.deploy import meshconfig

    meshconfig.patch_file(path, lambda c: meshconfig.apply_alias_ports(c, ports))
"""

import json
import shutil
from datetime import datetime
from pathlib import Path

from meshdeploy.deploy.settings import CONTAINER_HTTP_PORT, CONTAINER_HTTPS_PORT, PortConfig
from meshdeploy.security.exceptions import ConfigError

DEFAULT_DOMAIN_TITLE = "MeshCentral"
STUN_SERVERS = [{"urls": "stun:stun.l.google.com:19302"}]
SESSION_KEY = "MySessionKey"


# --- Normalisation ---

def settings_section(config: dict) -> dict:
    """Return config["settings"], creating it when missing."""
    if not isinstance(config.get("settings"), dict):
        config["settings"] = {}
    return config["settings"]


def webrtc_section(config: dict) -> dict:
    """Return settings.WebRTC as a dict; a bare boolean becomes {"enabled": bool}."""
    settings = settings_section(config)
    webrtc = settings.get("WebRTC")
    if isinstance(webrtc, bool):
        settings["WebRTC"] = {"enabled": webrtc}
    elif not isinstance(webrtc, dict):
        settings["WebRTC"] = {}
    return settings["WebRTC"]


def default_domain(config: dict) -> dict:
    """
    Return the default domain entry, settings.domains[""].

    `domains` is an object keyed by domain name. The legacy list form is
    discarded.
    """
    settings = settings_section(config)
    if not isinstance(settings.get("domains"), dict):
        settings["domains"] = {}
    domains = settings["domains"]
    if not isinstance(domains.get(""), dict):
        domains[""] = {}
    return domains[""]


# --- Patches ---

def apply_alias_ports(config: dict, ports: PortConfig) -> dict:
    """aliasPort/agentAliasPort exist only while the public port is non-default."""
    settings = settings_section(config)
    for key, alias in (("aliasPort", ports.https_alias), ("agentAliasPort", ports.agent_alias)):
        if alias is None:
            settings.pop(key, None)
        else:
            settings[key] = alias
    return config


def apply_display_defaults(config: dict) -> dict:
    domain = default_domain(config)
    domain["title"] = DEFAULT_DOMAIN_TITLE
    domain["DesktopQuality"] = 100
    domain["DesktopDownscale"] = False
    domain["MaxDesktopResolution"] = 0
    return config


def apply_access_address(config: dict, address: str, ports: PortConfig) -> dict:
    """
    Point the server at its public address.

    Sets the certificate name and redirect host to the address (this is
    what stops "Invalid origin in HTTP request"), pins the in-container
    ports, mirrors alias ports, enables WebRTC and the display defaults.
    """
    settings = settings_section(config)
    settings["cert"] = address
    settings["port"] = CONTAINER_HTTPS_PORT
    settings["redirPort"] = CONTAINER_HTTP_PORT
    apply_alias_ports(config, ports)
    settings["allownewtokens"] = True
    settings["_redirhost"] = address
    webrtc_section(config)["enabled"] = True
    apply_display_defaults(config)
    return config


def apply_optimization(config: dict) -> dict:
    """Extra performance settings offered after installation."""
    settings = settings_section(config)
    settings["maxoldcons"] = 100
    settings["maxoldgroups"] = 100
    settings["sessionkey"] = SESSION_KEY
    settings["allowaccountcreation"] = True
    settings["allownewtokens"] = True

    webrtc = webrtc_section(config)
    webrtc["enabled"] = True
    webrtc["iceServers"] = [dict(server) for server in STUN_SERVERS]

    domain = default_domain(config)
    domain["DesktopQuality"] = 100
    domain["DesktopDownscale"] = False
    domain["MaxDesktopResolution"] = 0
    domain["MaxFileTransferSize"] = 0
    domain["AllowFileTransfer"] = True
    domain["AllowTerminal"] = True
    domain["AllowDesktop"] = True
    return config


def set_webrtc(config: dict, enabled: bool) -> dict:
    # Replaces the whole section, dropping iceServers
    settings_section(config)["WebRTC"] = {"enabled": bool(enabled)}
    return config


def set_desktop_quality(config: dict, quality) -> dict:
    try:
        quality = int(quality)
    except (TypeError, ValueError):
        raise ConfigError(f"Desktop quality must be a number, got {quality!r}") from None
    if not 1 <= quality <= 100:
        raise ConfigError(f"Desktop quality must be between 1 and 100, got {quality}")
    default_domain(config)["DesktopQuality"] = quality
    return config


def set_desktop_downscale(config: dict, enabled: bool) -> dict:
    default_domain(config)["DesktopDownscale"] = bool(enabled)
    return config


def apply_recommended(config: dict) -> dict:
    set_webrtc(config, True)
    settings_section(config)["allownewtokens"] = True
    domain = default_domain(config)
    domain["DesktopQuality"] = 100
    domain["DesktopDownscale"] = False
    domain["MaxDesktopResolution"] = 0
    return config


def default_config(address: str, ports: PortConfig) -> dict:
    """A fresh config.json for when the container has not written one."""
    return apply_access_address({"settings": {}}, address, ports)


# --- File helpers ---

def read_config(path: str | Path) -> dict:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"{path} does not contain a JSON object")
    return config


def write_config(path: str | Path, config: dict) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2, ensure_ascii=False)
        f.write("\n")


def backup_config(path: str | Path, tag: str = "backup", now: datetime | None = None) -> Path:
    """
    Copy config.json aside before patching it.

    Returns:
        Path of the copy, e.g. config.json.backup.20240115_103000
    """
    path = Path(path)
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = path.with_name(f"{path.name}.{tag}.{stamp}")
    shutil.copy2(path, target)
    return target


def patch_file(path: str | Path, *patches) -> dict:
    """Read config.json, apply each patch in order, write it back."""
    config = read_config(path)
    for patch in patches:
        patch(config)
    write_config(path, config)
    return config
