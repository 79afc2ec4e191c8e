# Deployment modules
from meshdeploy.deploy.lifecycle import Deployment
from meshdeploy.deploy.menu import ManagementMenu
from meshdeploy.deploy.settings import Paths, PortConfig, Settings, load_settings

__all__ = ["Deployment", "ManagementMenu", "Paths", "PortConfig", "Settings", "load_settings"]
