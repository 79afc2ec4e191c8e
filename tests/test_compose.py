"""
Tests for docker-compose.yml generation.
"""

import pytest
import yaml

from meshdeploy.deploy.compose import (
    build_compose,
    configured_image,
    read_compose,
    render_compose,
    write_compose,
)
from meshdeploy.deploy.settings import PortConfig, Settings
from meshdeploy.security.exceptions import ConfigError


class TestCompose:
    def test_default_ports(self):
        service = build_compose(Settings(), PortConfig())["services"]["meshcentral"]
        assert service["ports"] == ["80:80", "443:443", "4433:4433", "8443:8443"]
        assert service["restart"] == "always"
        assert service["container_name"] == "meshcentral"

    def test_custom_ports_keep_container_side(self):
        ports = PortConfig(http=8080, https=8443, agent=5443, webrtc=9443)
        service = build_compose(Settings(), ports)["services"]["meshcentral"]
        assert service["ports"] == ["8080:80", "8443:443", "5443:4433", "9443:8443"]

    def test_environment_and_volumes(self):
        service = build_compose(Settings(timezone="UTC"), PortConfig())["services"]["meshcentral"]
        assert "TZ=UTC" in service["environment"]
        assert "NODE_ENV=production" in service["environment"]
        assert "./meshcentral-data:/opt/meshcentral/meshcentral-data" in service["volumes"]
        assert len(service["volumes"]) == 4

    def test_healthcheck(self):
        check = build_compose(Settings(), PortConfig())["services"]["meshcentral"]["healthcheck"]
        assert check["test"] == ["CMD", "curl", "-f", "http://localhost:80/"]
        assert check["start_period"] == "40s"

    def test_render_is_valid_yaml(self):
        text = render_compose(Settings(image="custom/mesh:1.2"), PortConfig())
        assert yaml.safe_load(text)["services"]["meshcentral"]["image"] == "custom/mesh:1.2"
        assert text.startswith("services:")

    def test_write_and_read(self, tmp_path):
        settings = Settings(install_dir=tmp_path / "mesh")
        paths = settings.paths
        assert read_compose(paths) == {}
        write_compose(paths, settings, PortConfig(http=8080))
        assert read_compose(paths)["services"]["meshcentral"]["ports"][0] == "8080:80"


class TestReadBack:
    @pytest.fixture
    def paths(self, tmp_path):
        paths = Settings(install_dir=tmp_path / "mesh").paths
        paths.install_dir.mkdir()
        return paths

    def test_invalid_yaml(self, paths):
        paths.compose_file.write_text("services:\n  meshcentral: [\n")
        with pytest.raises(ConfigError, match="Cannot read"):
            read_compose(paths)

    def test_not_a_mapping(self, paths):
        paths.compose_file.write_text("- meshcentral\n")
        with pytest.raises(ConfigError, match="not a compose mapping"):
            read_compose(paths)

    def test_empty_file(self, paths):
        paths.compose_file.write_text("")
        assert read_compose(paths) == {}

    def test_configured_image(self, paths):
        write_compose(paths, Settings(image="custom/mesh:1.2"), PortConfig())
        assert configured_image(paths, "fallback") == "custom/mesh:1.2"

    @pytest.mark.parametrize("text", [
        "services: null\n",
        "services:\n  meshcentral: null\n",
        "services:\n  meshcentral:\n    image: 7\n",
        "services: [\n",
    ])
    def test_configured_image_falls_back(self, paths, text):
        paths.compose_file.write_text(text)
        assert configured_image(paths, "fallback") == "fallback"

    def test_configured_image_not_installed(self, tmp_path):
        paths = Settings(install_dir=tmp_path / "missing").paths
        assert configured_image(paths, "fallback") == "fallback"
