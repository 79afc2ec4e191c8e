"""
MeshCentral deployment lifecycle.

Multi-step flows behind the menu and the CLI subcommands: fresh install,
redeploy, start/stop, image update, port and access-address changes,
performance tuning and uninstall.

Usage:
    from meshdeploy.deploy.lifecycle import Deployment

    deployment = Deployment(settings, runner, console)
    if not deployment.is_installed():
        deployment.fresh_install()
"""

import shutil
import time
from pathlib import Path

from meshdeploy.console import BLUE, CYAN, GREEN, RED, RULE, YELLOW, Console
from meshdeploy.deploy import compose, firewall, host, meshconfig
from meshdeploy.deploy.settings import (
    CONTAINER_AGENT_PORT,
    CONTAINER_HTTP_PORT,
    CONTAINER_HTTPS_PORT,
    CONTAINER_WEBRTC_PORT,
    PortConfig,
    Settings,
    load_domain,
    load_ports,
    save_domain,
    save_ports,
    validate_port,
)
from meshdeploy.security.exceptions import ConfigError, PrerequisiteError
from meshdeploy.security.wrapper import CommandRunner, ComposeController

# Files the server regenerates for a new certificate name
CERT_PATTERNS = ("*.pem", "*.key", "*.crt")

PERFORMANCE_OPTIONS = {
    "1": "Toggle WebRTC",
    "2": "Desktop quality (1-100)",
    "3": "Resolution downscaling",
    "4": "Apply all recommended settings",
    "0": "Back",
}


class Deployment:
    """One MeshCentral deployment under settings.install_dir."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        console: Console,
        sleep=time.sleep,
    ):
        self.settings = settings
        self.paths = settings.paths
        self.runner = runner
        self.console = console
        self.compose = ComposeController(runner, self.paths.install_dir)
        self._sleep = sleep

    # --- State ---

    @property
    def ports(self) -> PortConfig:
        return load_ports(self.paths)

    def is_installed(self) -> bool:
        """Compose file written and the container created."""
        return self.paths.compose_file.exists() and self.compose.exists(self.settings.container_name)

    def is_running(self) -> bool:
        return self.compose.is_running(self.settings.container_name)

    def access_address(self) -> str:
        """Saved access address, else the detected server address."""
        return load_domain(self.paths) or host.server_address(self.runner)

    def wait(self, seconds: float, reason: str) -> None:
        if seconds > 0:
            self.console.info(f"{reason} (about {seconds:g} seconds)...")
            self._sleep(seconds)

    def _verify_running(self, ok_message: str, fail_message: str) -> bool:
        # Nothing was started in dry-run mode
        if self.runner.dry_run or self.is_running():
            self.console.success(ok_message)
            return True
        self.console.error(fail_message)
        return False

    # --- Install ---

    def fresh_install(self) -> None:
        """Full first-time installation, steps 1 to 6 plus post-install configuration."""
        c = self.console
        c.header("MeshCentral fresh install")

        c.echo("[Step 1/6] Port mapping")
        c.echo()
        c.echo("Default ports:")
        defaults = PortConfig()
        c.echo(f"  HTTP:    {defaults.http}")
        c.echo(f"  HTTPS:   {defaults.https}")
        c.echo(f"  Agent:   {defaults.agent}")
        c.echo(f"  WebRTC:  {defaults.webrtc}")
        c.echo()
        if c.confirm("Use the default ports?"):
            save_ports(self.paths, defaults)
        else:
            self.configure_ports(offer_redeploy=False)
        c.echo()

        c.info("[Step 2/6] Checking system environment...")
        host.check_system(c)
        host.install_dependencies(self.runner, c)
        host.check_ports(self.runner, c, self.ports.as_list())

        c.info("[Step 3/6] Installing Docker...")
        host.install_docker(self.runner, c)
        host.check_docker_compose(self.runner, c)

        c.info("[Step 4/6] Creating directories...")
        host.create_directories(self.paths, c)
        self.write_compose()

        c.info("[Step 5/6] Configuring firewall...")
        self.configure_firewall()

        c.info("[Step 6/6] Starting services...")
        self.start_services()

        self.configure_access_address()
        self.configure_optimization()
        self.summary()
        c.success("MeshCentral installation complete!")

    def write_compose(self) -> Path:
        self.console.info("Generating docker-compose.yml...")
        path = compose.write_compose(self.paths, self.settings, self.ports)
        self.console.success("docker-compose.yml generated")
        return path

    def configure_firewall(self) -> bool:
        """Optionally open the service ports (and SSH) in ufw."""
        c = self.console
        port_list = ", ".join(str(p) for p in self.ports.as_list())
        if not c.confirm(f"Configure the firewall (ufw) to open ports {port_list}?"):
            c.info("Skipping firewall configuration")
            return False

        c.info("Configuring firewall rules...")
        firewall.open_ports(self.runner, self.ports)
        if not firewall.is_active(self.runner):
            c.warning("The firewall is not enabled")
            if c.confirm("Enable the firewall?"):
                firewall.enable(self.runner)
                c.success("Firewall enabled")
        c.success("Firewall rules configured")
        c.echo(firewall.status(self.runner))
        return True

    def start_services(self) -> None:
        """
        Pull the image and bring the service up.

        Raises:
            PrerequisiteError: If the container is not running afterwards.
        """
        self.console.info("Pulling the MeshCentral image...")
        self.compose.pull()
        self.console.info("Starting MeshCentral...")
        self.compose.up()
        self.wait(self.settings.startup_wait, "Waiting for the service to start")
        if not self._verify_running(
            "MeshCentral container started",
            "MeshCentral container failed to start, check the logs: docker compose logs -f",
        ):
            raise PrerequisiteError("MeshCentral container failed to start")

    # --- Access address ---

    def remove_certificates(self) -> list[Path]:
        """Delete generated certificates and agent binaries so they are rebuilt for the new name."""
        removed = []
        data_dir = self.paths.data_dir
        if not data_dir.is_dir():
            return removed
        for pattern in CERT_PATTERNS:
            for path in data_dir.glob(pattern):
                if path.is_file():
                    path.unlink()
                    removed.append(path)
        agents = data_dir / "agents"
        if agents.is_dir():
            shutil.rmtree(agents)
            removed.append(agents)
        return removed

    def prompt_access_address(self) -> str:
        c = self.console
        default = host.server_address(self.runner)
        while True:
            c.echo(f"Enter the access address (e.g. {default or '203.0.113.10'} or mesh.example.com):")
            address = c.ask("Access address", default or None)
            if address:
                c.info(f"Access address set to: {address}")
                return address
            c.error("The access address cannot be empty, please try again")

    def write_access_config(self, address: str) -> dict:
        """
        Create or patch config.json for `address`.

        Missing file: write the default document. Otherwise back it up and
        patch it; unreadable JSON is replaced with the default document.
        """
        c = self.console
        config_file = self.paths.config_file
        ports = self.ports

        if not config_file.exists():
            c.warning("Config file not found, creating the default configuration...")
            meshconfig.write_config(config_file, meshconfig.default_config(address, ports))

        meshconfig.backup_config(config_file, "backup")
        try:
            config = meshconfig.patch_file(
                config_file, lambda cfg: meshconfig.apply_access_address(cfg, address, ports)
            )
            c.success("Configuration updated")
        except ConfigError as e:
            c.error(f"Configuration update failed: {e}")
            c.info("Writing a new configuration file...")
            config = meshconfig.default_config(address, ports)
            meshconfig.write_config(config_file, config)
            c.success("New configuration file created")
        return config

    def configure_access_address(self, address: str | None = None) -> bool:
        """
        Set the address MeshCentral is reached at and redeploy.

        Fixes "Invalid origin in HTTP request" after install or an IP change.

        Returns:
            True if the container is running with the new address.
        """
        c = self.console
        c.info("Configure the MeshCentral access address (required)")
        c.echo("This fixes the 'Invalid origin in HTTP request' error")
        c.echo("Enter the server IP address or domain name")
        c.echo()

        if not address:
            address = self.prompt_access_address()

        self.wait(self.settings.first_start_wait, "Waiting for MeshCentral to generate its configuration")

        c.info("Removing old certificates so they match the new address...")
        self.remove_certificates()

        self.write_access_config(address)
        c.success(f"Access address configured: {address}")

        c.info("Recreating the container...")
        self.compose.down()
        self.compose.up()
        self.wait(self.settings.startup_wait, "Waiting for the service to restart")

        if self._verify_running(
            f"MeshCentral redeployed, access it at: https://{address}/",
            "MeshCentral redeploy failed",
        ):
            save_domain(self.paths, address)
            return True
        return False

    # --- Tuning ---

    def configure_optimization(self) -> bool:
        """Offer the extra performance settings and restart to apply them."""
        c = self.console
        c.info("Enable extra MeshCentral performance optimizations?")
        c.echo("Note: WebRTC and high desktop quality are already enabled by the address configuration")
        c.echo("Extra optimizations include:")
        c.echo("- more aggressive performance parameters")
        c.echo("- connection pool tuning")
        if not c.confirm("Apply them?"):
            c.info("Skipping extra optimizations")
            return False

        config_file = self.paths.config_file
        if not config_file.exists():
            c.warning("Config file not found, skipping optimizations")
            return False

        c.info("Applying extra optimizations...")
        try:
            meshconfig.backup_config(config_file, "optimization_backup")
            meshconfig.patch_file(config_file, meshconfig.apply_optimization)
        except (ConfigError, OSError) as e:
            c.error(f"Optimization failed: {e}")
            return False
        c.success("Extra optimizations applied")

        c.info("Restarting MeshCentral to apply the new configuration...")
        self.compose.restart_container(self.settings.container_name)
        self.wait(self.settings.restart_wait, "Waiting for the service to restart")
        return self._verify_running(
            "MeshCentral restarted with extra optimizations",
            "MeshCentral restart failed",
        )

    def adjust_performance(self, choice: str | None = None) -> bool:
        """
        Performance submenu: WebRTC, quality, downscaling, all recommended.

        Returns:
            True if config.json was changed and the container restarted.
        """
        c = self.console
        c.header("Adjust performance settings")
        config_file = self.paths.config_file
        if not config_file.exists():
            c.error(f"Config file does not exist: {config_file}")
            return False

        if choice is None:
            c.echo("Available options:")
            for key, label in PERFORMANCE_OPTIONS.items():
                c.echo(f"{key}. {label}")
            c.echo()
            choice = c.ask("Choose")

        if choice == "1":
            enabled = c.confirm("Enable WebRTC?")
            meshconfig.patch_file(config_file, lambda cfg: meshconfig.set_webrtc(cfg, enabled))
            c.success("WebRTC setting updated")
        elif choice == "2":
            quality = c.ask("Desktop quality (1-100, recommended 100)", "100")
            meshconfig.patch_file(config_file, lambda cfg: meshconfig.set_desktop_quality(cfg, quality))
            c.success("Desktop quality updated")
        elif choice == "3":
            downscale = not c.confirm("Disable resolution downscaling?")
            meshconfig.patch_file(config_file, lambda cfg: meshconfig.set_desktop_downscale(cfg, downscale))
            c.success("Downscaling setting updated")
        elif choice == "4":
            c.info("Applying all recommended settings...")
            meshconfig.patch_file(config_file, meshconfig.apply_recommended)
            c.success("All recommended settings applied")
        elif choice == "0":
            return False
        else:
            c.error("Invalid option")
            return False

        c.info("Restarting the service to apply the configuration...")
        self.compose.restart_container(self.settings.container_name)
        c.success("Configuration updated and service restarted")
        return True

    # --- Ports ---

    def prompt_ports(self) -> PortConfig:
        """Ask for each port; a blank answer keeps the current value."""
        c = self.console
        current = self.ports
        answers = {}
        for attr, label in (("http", "HTTP port"), ("https", "HTTPS port"),
                            ("agent", "Agent port"), ("webrtc", "WebRTC port")):
            value = getattr(current, attr)
            while True:
                raw = c.ask(label, str(value))
                try:
                    answers[attr] = validate_port(raw, label)
                    break
                except ConfigError as e:
                    c.error(str(e))
        return current.replace(**answers)

    def _print_ports(self, ports: PortConfig) -> None:
        self.console.echo(f"  HTTP port:    {ports.http}")
        self.console.echo(f"  HTTPS port:   {ports.https}")
        self.console.echo(f"  Agent port:   {ports.agent}")
        self.console.echo(f"  WebRTC port:  {ports.webrtc}")

    def configure_ports(self, ports: PortConfig | None = None, offer_redeploy: bool = True) -> PortConfig:
        """
        Change the published ports.

        Saves the mapping, mirrors alias ports into config.json when the
        server is installed, and offers a redeploy.
        """
        c = self.console
        c.header("Configure port mapping")

        if ports is None:
            c.echo("Current ports:")
            self._print_ports(self.ports)
            c.echo()
            c.echo("Press Enter to keep the current value")
            c.echo()
            ports = self.prompt_ports()

        save_ports(self.paths, ports)
        c.success("Port configuration saved")
        c.echo()
        c.echo("New ports:")
        self._print_ports(ports)

        if self.paths.config_file.exists():
            c.info("Updating ports in config.json...")
            try:
                meshconfig.patch_file(self.paths.config_file, lambda cfg: meshconfig.apply_alias_ports(cfg, ports))
                c.success("Ports updated in config.json")
            except ConfigError as e:
                c.error(f"Update failed: {e}")

        if offer_redeploy and self.paths.compose_file.exists():
            c.echo()
            c.warning("After changing ports you must redeploy and download the agent installers again")
            if c.confirm("Redeploy now?"):
                self.redeploy()
        return ports

    # --- Lifecycle verbs ---

    def redeploy(self) -> bool:
        """Stop, regenerate docker-compose.yml, pull and start again."""
        self.console.info("Redeploying MeshCentral...")
        if self.paths.compose_file.exists():
            self.compose.down()
        self.write_compose()
        self.compose.pull()
        self.compose.up()
        self.wait(self.settings.startup_wait, "Waiting for the service to start")
        return self._verify_running("MeshCentral redeployed", "MeshCentral redeploy failed")

    def start(self) -> None:
        self.compose.up()
        self.console.success("Service started")

    def stop(self) -> None:
        self.compose.down()
        self.console.success("Service stopped")

    def toggle(self) -> None:
        """Offer to stop a running service or start a stopped one."""
        if self.is_running():
            if self.console.confirm("The service is running, stop it?"):
                self.stop()
        elif self.console.confirm("The service is stopped, start it?"):
            self.start()

    def logs(self, follow: bool = True, tail: int = 100) -> None:
        if follow:
            self.console.info("Press Ctrl+C to stop following the logs")
        try:
            self.compose.logs(follow=follow, tail=tail)
        except KeyboardInterrupt:
            self.console.echo()

    def update(self) -> None:
        self.console.info("Updating the image...")
        self.compose.pull()
        self.compose.up()
        self.console.success("Image updated")

    def uninstall(self) -> bool:
        """
        Remove the container and, optionally, all data.

        Returns:
            True if uninstalled, False if the user cancelled.
        """
        c = self.console
        c.header("Uninstall MeshCentral")
        c.warning("This removes the MeshCentral container and all of its data!")
        c.echo()
        if c.ask("Confirm uninstall? (type 'yes' to confirm)") != "yes":
            c.info("Uninstall cancelled")
            return False

        c.info("Stopping and removing the container...")
        if self.paths.compose_file.exists():
            self.compose.down(check=False)
        self.compose.remove_container(self.settings.container_name)

        if c.confirm("Delete all data files?"):
            c.info("Deleting the data directory...")
            if not self.runner.dry_run:
                shutil.rmtree(self.paths.install_dir, ignore_errors=True)
            c.success("All data deleted")
        else:
            c.info(f"Keeping the data directory: {self.paths.install_dir}")

        c.success("MeshCentral uninstalled")
        return True

    # --- Summary ---

    def summary(self) -> None:
        """Detailed configuration block: status, URLs, ports, directories, commands."""
        c = self.console
        ports = self.ports
        address = self.access_address()
        running = self.is_running()
        status = c.paint("running", GREEN) if running else c.paint("stopped", RED)
        image = compose.configured_image(self.paths, self.settings.image)
        install_dir = self.paths.install_dir

        c.header("MeshCentral configuration")
        c.echo("[Status]")
        c.echo(f"Container status: {status}")
        c.echo(f"Container name:   {self.settings.container_name}")
        c.echo(f"Image:            {image}")
        c.echo()
        c.echo("[Access]")
        c.echo(f"HTTPS URL:        {c.paint(f'https://{address}:{ports.https}/', BLUE)}")
        c.echo(f"HTTP URL:         {c.paint(f'http://{address}:{ports.http}/', BLUE)}")
        c.echo()
        c.echo("[Ports]")
        c.echo(f"HTTP port:        {ports.http} (default: {CONTAINER_HTTP_PORT})")
        c.echo(f"HTTPS port:       {ports.https} (default: {CONTAINER_HTTPS_PORT})")
        c.echo(f"Agent port:       {ports.agent} (default: {CONTAINER_AGENT_PORT})")
        c.echo(f"WebRTC port:      {ports.webrtc} (default: {CONTAINER_WEBRTC_PORT})")
        c.echo()
        c.echo("[Directories]")
        c.echo(f"Install dir:      {install_dir}/")
        c.echo(f"Data dir:         {self.paths.data_dir}/")
        c.echo(f"Files dir:        {self.paths.files_dir}/")
        c.echo(f"Backups dir:      {self.paths.backups_dir}/")
        c.echo(f"Config file:      {self.paths.config_file}")
        c.echo()
        c.echo("[Administrator]")
        c.echo(c.paint(f"Register the administrator account on first visit to https://{address}:{ports.https}/", YELLOW))
        c.echo(c.paint("The first account registered becomes the administrator", YELLOW))
        c.echo()
        c.echo("[Common commands]")
        c.echo(f"View logs:        cd {install_dir} && docker compose logs -f")
        c.echo(f"Restart:          cd {install_dir} && docker compose restart")
        c.echo(f"Stop:             cd {install_dir} && docker compose down")
        c.echo(f"Start:            cd {install_dir} && docker compose up -d")
        c.echo(f"Update image:     cd {install_dir} && docker compose pull && docker compose up -d")
        c.echo()
        c.echo(c.paint(RULE, CYAN))
