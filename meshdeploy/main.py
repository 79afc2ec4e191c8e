"""
meshdeploy - MeshCentral one-click deployment and management

Deploys MeshCentral in Docker on a Debian 12 host and manages it afterwards.
Without a subcommand it behaves interactively: an installed server gets
its configuration summary and the management menu, otherwise it offers a
fresh install.

Usage:
    sudo meshdeploy                      # Interactive
    sudo meshdeploy install              # Fresh install
    sudo meshdeploy info                 # Configuration summary
    sudo meshdeploy ports --https 8443   # Change published ports
    sudo meshdeploy domain mesh.example.com
    meshdeploy --dry-run --skip-root-check install

Environment:
    MESHDEPLOY_INSTALL_DIR, MESHDEPLOY_CONTAINER_NAME, MESHDEPLOY_IMAGE,
    MESHDEPLOY_TZ, MESHDEPLOY_AUDIT_DIR, MESHDEPLOY_STARTUP_WAIT, ...
    (read from the environment or a .env file)
"""

import argparse
import sys

from dotenv import load_dotenv

from meshdeploy import __version__
from meshdeploy.console import Console
from meshdeploy.deploy import host
from meshdeploy.deploy.lifecycle import Deployment
from meshdeploy.deploy.menu import ManagementMenu
from meshdeploy.deploy.settings import load_settings
from meshdeploy.security.audit import audit_log
from meshdeploy.security.exceptions import DeployError
from meshdeploy.security.wrapper import CommandRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meshdeploy",
        description="MeshCentral one-click deployment and management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--install-dir",
        default=None,
        help="Deployment directory (default: /opt/meshcentral)",
    )
    parser.add_argument(
        "--audit-dir",
        default=None,
        help="Directory for the audit log (default: /var/log/meshdeploy)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record host commands instead of executing them",
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Echo every command before it runs",
    )
    parser.add_argument(
        "--skip-root-check",
        action="store_true",
        help="Do not require root privileges",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("menu", help="Interactive mode (default)")
    sub.add_parser("install", help="Fresh installation")
    sub.add_parser("info", help="Show the detailed configuration")
    sub.add_parser("redeploy", help="Regenerate docker-compose.yml, pull and restart")
    sub.add_parser("start", help="docker compose up -d")
    sub.add_parser("stop", help="docker compose down")
    sub.add_parser("update", help="Pull the latest image and restart")

    logs = sub.add_parser("logs", help="Show container logs")
    logs.add_argument("--tail", type=int, default=100, help="Lines to show (default: 100)")
    logs.add_argument("--no-follow", action="store_true", help="Print and exit")

    ports = sub.add_parser("ports", help="Change the published ports")
    ports.add_argument("--http", type=int, default=None)
    ports.add_argument("--https", type=int, default=None)
    ports.add_argument("--agent", type=int, default=None)
    ports.add_argument("--webrtc", type=int, default=None)

    domain = sub.add_parser("domain", help="Set the access address (IP or domain name)")
    domain.add_argument("address", nargs="?", default=None)

    tune = sub.add_parser("tune", help="Adjust performance settings")
    tune.add_argument(
        "option",
        nargs="?",
        choices=["1", "2", "3", "4"],
        help="1 WebRTC, 2 quality, 3 downscaling, 4 all recommended",
    )

    sub.add_parser("uninstall", help="Remove the container and optionally all data")

    audit = sub.add_parser("audit", help="Show recent audit log entries")
    audit.add_argument("-n", type=int, default=20, help="Entries to show (default: 20)")
    return parser


def interactive(deployment: Deployment) -> None:
    """No subcommand: summary + menu when installed, else offer to install."""
    c = deployment.console
    if deployment.is_installed():
        c.success("MeshCentral installation detected")
        c.echo()
        deployment.summary()
        ManagementMenu(deployment).run()
        return

    c.info("No MeshCentral installation detected")
    c.echo()
    if not c.confirm("Install MeshCentral now?"):
        c.info("Installation cancelled")
        return
    deployment.fresh_install()


def dispatch(deployment: Deployment, args) -> None:
    c = deployment.console
    command = args.command or "menu"

    if command == "menu":
        interactive(deployment)
    elif command == "install":
        deployment.fresh_install()
    elif command == "info":
        deployment.summary()
    elif command == "redeploy":
        deployment.redeploy()
    elif command == "start":
        deployment.start()
    elif command == "stop":
        deployment.stop()
    elif command == "update":
        deployment.update()
    elif command == "logs":
        deployment.logs(follow=not args.no_follow, tail=args.tail)
    elif command == "ports":
        changes = {k: getattr(args, k) for k in ("http", "https", "agent", "webrtc") if getattr(args, k) is not None}
        deployment.configure_ports(deployment.ports.replace(**changes) if changes else None)
    elif command == "domain":
        deployment.configure_access_address(args.address)
    elif command == "tune":
        deployment.adjust_performance(args.option)
    elif command == "uninstall":
        deployment.uninstall()
    elif command == "audit":
        for entry in deployment.runner.audit.entries(args.n):
            line = f"{entry.timestamp}  {entry.status:<8} {entry.action:<9} {entry.params}"
            c.echo(f"{line}  ({entry.error})" if entry.error else line)


def main(argv=None, console: Console | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load .env for MESHDEPLOY_* overrides
    load_dotenv()

    console = console or Console()

    try:
        settings = load_settings(
            install_dir=args.install_dir,
            audit_dir=args.audit_dir,
            dry_run=args.dry_run or None,
            debug=args.debug or None,
        )
        if not args.skip_root_check and args.command != "audit":
            host.require_root()

        runner = CommandRunner(
            dry_run=settings.dry_run,
            audit_dir=settings.audit_dir,
            echo=(lambda line: console.echo(f"$ {line}")) if settings.debug else None,
        )
        deployment = Deployment(settings, runner, console)

        if not args.command or args.command == "menu":
            console.header("MeshCentral one-click deployment and management", "Target system: Debian 12 LTS")

        audit_log(runner.audit)(dispatch)(deployment, args)

    except DeployError as e:
        console.error(str(e))
        return 1
    except (KeyboardInterrupt, EOFError):
        console.echo()
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
