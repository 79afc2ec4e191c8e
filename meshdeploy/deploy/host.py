"""
Debian host preparation.

Root check, OS check, base packages, Docker Engine from Docker's apt
repository, compose plugin check, port availability and the server's
public address. All commands go through the CommandRunner.
"""

import ipaddress
import os
from pathlib import Path

import requests

from meshdeploy.console import Console
from meshdeploy.deploy.settings import Paths
from meshdeploy.security.exceptions import CommandError, PrerequisiteError
from meshdeploy.security.wrapper import CommandRunner

OS_RELEASE = Path("/etc/os-release")
KEYRING_DIR = Path("/etc/apt/keyrings")
DOCKER_SOURCES = Path("/etc/apt/sources.list.d/docker.list")
DOCKER_GPG_URL = "https://download.docker.com/linux/debian/gpg"
DOCKER_REPO_URL = "https://download.docker.com/linux/debian"

BASE_PACKAGES = ["curl", "tar", "ufw", "ca-certificates", "gnupg", "lsb-release"]
OLD_DOCKER_PACKAGES = ["docker", "docker-engine", "docker.io", "containerd", "runc"]
DOCKER_PACKAGES = [
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
]

# Tried in order; both answer with the bare IPv4 address
PUBLIC_IP_SERVICES = ["https://ifconfig.me/ip", "https://ipv4.icanhazip.com"]

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrerequisiteError("Please run as root, e.g.: sudo meshdeploy")


def read_os_release(path: str | Path = OS_RELEASE) -> dict[str, str]:
    """Parse /etc/os-release into a dict; empty when the file is missing."""
    path = Path(path)
    if not path.exists():
        return {}
    info = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        info[key] = value.strip().strip('"').strip("'")
    return info


def check_system(console: Console, os_release: str | Path = OS_RELEASE) -> dict[str, str]:
    """
    Warn when the host is not Debian 12 and let the user decide.

    Raises:
        PrerequisiteError: If the user declines to continue.
    """
    console.info("Checking system environment...")
    info = read_os_release(os_release)

    warnings = []
    if not info:
        warnings.append("Unable to detect the operating system version")
    else:
        if info.get("ID") != "debian":
            warnings.append("This system is not Debian; there may be compatibility issues")
        if info.get("VERSION_ID") != "12":
            warnings.append(f"This system is not Debian 12, version: {info.get('VERSION_ID', 'unknown')}")

    for message in warnings:
        console.warning(message)
        if not console.confirm("Continue anyway?"):
            raise PrerequisiteError("Installation aborted by user")

    console.success("System check complete")
    return info


def _apt_env() -> dict:
    env = os.environ.copy()
    env.update(APT_ENV)
    return env


def install_dependencies(runner: CommandRunner, console: Console) -> None:
    console.info(f"Installing base dependencies ({', '.join(BASE_PACKAGES)})...")
    runner.run(["apt-get", "update", "-y"], env=_apt_env())
    runner.run(["apt-get", "install", "-y", *BASE_PACKAGES], env=_apt_env())
    console.success("Base dependencies installed")


def docker_version(runner: CommandRunner) -> str | None:
    """`docker --version` output, or None when docker is not usable."""
    if not runner.which("docker") and not runner.dry_run:
        return None
    try:
        result = runner.run(["docker", "--version"], check=False, capture=True)
    except CommandError:
        return None
    return result.stdout.strip() if result.ok else None


def docker_apt_source(arch: str, codename: str, keyring: Path) -> str:
    return f"deb [arch={arch} signed-by={keyring}] {DOCKER_REPO_URL} {codename} stable\n"


def fetch_docker_key(timeout: float = 30) -> bytes:
    response = requests.get(DOCKER_GPG_URL, timeout=timeout)
    response.raise_for_status()
    return response.content


def install_docker(
    runner: CommandRunner,
    console: Console,
    os_release: str | Path = OS_RELEASE,
    keyring_dir: Path = KEYRING_DIR,
    sources_file: Path = DOCKER_SOURCES,
) -> str:
    """
    Install Docker Engine and the compose plugin unless docker is present.

    Returns:
        The `docker --version` string.

    Raises:
        PrerequisiteError: If docker is still unusable afterwards.
    """
    console.info("Checking Docker installation...")
    version = docker_version(runner)
    if version is not None:
        console.success(f"Docker already installed: {version}")
        return version

    console.info("Installing Docker...")
    runner.run(["apt-get", "remove", "-y", *OLD_DOCKER_PACKAGES], check=False, capture=True)

    keyring = Path(keyring_dir) / "docker.gpg"
    arch = runner.run(["dpkg", "--print-architecture"], capture=True).stdout.strip() or "amd64"
    codename = read_os_release(os_release).get("VERSION_CODENAME", "bookworm")

    if not runner.dry_run:
        Path(keyring_dir).mkdir(mode=0o755, parents=True, exist_ok=True)
        try:
            key = fetch_docker_key()
        except requests.RequestException as e:
            raise PrerequisiteError(f"Could not download Docker's GPG key: {e}") from e
        runner.run(["gpg", "--dearmor", "--yes", "-o", str(keyring)], input=key)
        keyring.chmod(0o644)
        Path(sources_file).parent.mkdir(parents=True, exist_ok=True)
        Path(sources_file).write_text(docker_apt_source(arch, codename, keyring), encoding="utf-8")

    runner.run(["apt-get", "update", "-y"], env=_apt_env())
    runner.run(["apt-get", "install", "-y", *DOCKER_PACKAGES], env=_apt_env())
    runner.run(["systemctl", "start", "docker"])
    runner.run(["systemctl", "enable", "docker"])

    version = docker_version(runner)
    if version is None:
        raise PrerequisiteError("Docker installation failed, please check manually")
    console.success(f"Docker installed: {version}")
    return version


def check_docker_compose(runner: CommandRunner, console: Console) -> str:
    console.info("Checking Docker Compose...")
    result = runner.run(["docker", "compose", "version"], check=False, capture=True)
    if not result.ok:
        raise PrerequisiteError("Docker Compose not found, make sure docker-compose-plugin is installed")
    console.success(f"Docker Compose available: {result.stdout.strip()}")
    return result.stdout.strip()


def occupied_ports(ss_output: str, ports: list[int]) -> list[int]:
    """
    Ports from `ports` that appear as a local listening address in `ss -tuln`.

    Args:
        ss_output: Output of `ss -tuln`.
        ports: Candidate ports.

    Returns:
        Occupied ports, in the order given.
    """
    listening = set()
    for line in ss_output.splitlines()[1:]:
        columns = line.split()
        if len(columns) < 5:
            continue
        _, _, port = columns[4].rpartition(":")
        if port.isdigit():
            listening.add(int(port))
    return [p for p in ports if p in listening]


def check_ports(runner: CommandRunner, console: Console, ports: list[int]) -> list[int]:
    """
    Warn about ports already in use and let the user decide.

    Raises:
        PrerequisiteError: If ports are taken and the user declines to continue.
    """
    console.info("Checking port availability...")
    result = runner.run(["ss", "-tuln"], check=False, capture=True)
    busy = occupied_ports(result.stdout, ports)
    port_list = ", ".join(str(p) for p in ports)
    if busy:
        console.warning(f"These ports are already in use: {' '.join(str(p) for p in busy)}")
        console.warning(f"MeshCentral needs ports {port_list}")
        if not console.confirm("Continue anyway?"):
            raise PrerequisiteError("Installation aborted by user")
    else:
        console.success(f"Port check passed, {port_list} are available")
    return busy


def public_ip(timeout: float = 5) -> str | None:
    """Ask the public-IP echo services in turn; None when all fail."""
    for url in PUBLIC_IP_SERVICES:
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException:
            continue
        candidate = response.text.strip()
        try:
            ipaddress.IPv4Address(candidate)
        except ValueError:
            continue
        return candidate
    return None


def private_ip(runner: CommandRunner) -> str | None:
    """First address reported by `hostname -I`."""
    try:
        result = runner.run(["hostname", "-I"], check=False, capture=True)
    except CommandError:
        return None
    addresses = result.stdout.split()
    return addresses[0] if addresses else None


def server_address(runner: CommandRunner, timeout: float = 5) -> str:
    """Public IPv4 when reachable, otherwise the first local address."""
    return public_ip(timeout) or private_ip(runner) or ""


def create_directories(paths: Paths, console: Console) -> None:
    console.info("Creating MeshCentral directory structure...")
    for directory in paths.data_dirs():
        directory.mkdir(parents=True, exist_ok=True)
    for root, dirs, files in os.walk(paths.install_dir):
        os.chmod(root, 0o755)
        for name in files:
            os.chmod(os.path.join(root, name), 0o755)
    console.success(f"Directories created: {paths.install_dir}")
