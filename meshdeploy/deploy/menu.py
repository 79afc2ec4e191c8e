"""
Interactive management menu.

Shown when MeshCentral is already installed. Each choice maps to one
Deployment flow; the loop ends on 0 or after a full uninstall.
"""

from meshdeploy.deploy.lifecycle import Deployment
from meshdeploy.security.exceptions import DeployError

MENU_OPTIONS = {
    "1": "View detailed configuration",
    "2": "Adjust performance settings",
    "3": "Change port configuration",
    "4": "Redeploy service",
    "5": "Start/stop service",
    "6": "View logs",
    "7": "Update image",
    "8": "Change access address",
    "9": "Uninstall MeshCentral",
    "0": "Exit",
}


class ManagementMenu:
    """Read a choice, run it, repeat."""

    def __init__(self, deployment: Deployment):
        self.deployment = deployment
        self.console = deployment.console
        self.actions = {
            "1": deployment.summary,
            "2": deployment.adjust_performance,
            "3": deployment.configure_ports,
            "4": deployment.redeploy,
            "5": deployment.toggle,
            "6": deployment.logs,
            "7": deployment.update,
            "8": deployment.configure_access_address,
        }

    def show(self) -> None:
        self.console.header("MeshCentral management menu")
        for key, label in MENU_OPTIONS.items():
            self.console.echo(f"{key}. {label}")
        self.console.echo()

    def handle(self, choice: str) -> bool:
        """
        Run one menu choice.

        Returns:
            False when the menu should exit.
        """
        if choice == "0":
            self.console.info("Leaving the management menu")
            return False

        if choice == "9":
            self.deployment.uninstall()
            return self.deployment.paths.install_dir.exists()

        action = self.actions.get(choice)
        if action is None:
            self.console.error("Invalid option, please choose again")
            return True

        # A failed command returns to the menu instead of ending the session
        try:
            action()
        except DeployError as e:
            self.console.error(str(e))
        return True

    def run(self) -> None:
        while True:
            self.show()
            if not self.handle(self.console.ask("Choose an option")):
                break
