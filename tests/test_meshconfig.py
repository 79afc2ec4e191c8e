"""
Tests for config.json patching.
"""

import copy
import json
from datetime import datetime

import pytest

from meshdeploy.deploy import meshconfig
from meshdeploy.deploy.settings import PortConfig
from meshdeploy.security.exceptions import ConfigError


def _twice(patch, config):
    once = patch(copy.deepcopy(config))
    again = patch(copy.deepcopy(once))
    return once, again


class TestNormalisation:
    def test_missing_settings_created(self):
        config = {}
        assert meshconfig.settings_section(config) == {}
        assert config == {"settings": {}}

    def test_boolean_webrtc_becomes_object(self):
        config = {"settings": {"WebRTC": True}}
        assert meshconfig.webrtc_section(config) == {"enabled": True}

    def test_legacy_domain_list_replaced(self):
        config = {"settings": {"domains": ["old"]}}
        domain = meshconfig.default_domain(config)
        assert domain == {}
        assert config["settings"]["domains"] == {"": {}}

    def test_other_domains_kept(self):
        config = {"settings": {"domains": {"corp": {"title": "Corp"}}}}
        meshconfig.default_domain(config)
        assert config["settings"]["domains"]["corp"] == {"title": "Corp"}


class TestAliasPorts:
    def test_non_default_ports_added(self):
        config = meshconfig.apply_alias_ports({}, PortConfig(https=8443, agent=5443))
        assert config["settings"]["aliasPort"] == 8443
        assert config["settings"]["agentAliasPort"] == 5443

    def test_default_ports_removed(self):
        config = {"settings": {"aliasPort": 8443, "agentAliasPort": 5443, "cert": "x"}}
        meshconfig.apply_alias_ports(config, PortConfig())
        assert config == {"settings": {"cert": "x"}}

    def test_idempotent(self):
        once, again = _twice(lambda c: meshconfig.apply_alias_ports(c, PortConfig(https=9443)), {})
        assert once == again


class TestAccessAddress:
    def test_sets_address_fields(self):
        config = meshconfig.apply_access_address({}, "mesh.example.com", PortConfig())
        settings = config["settings"]
        assert settings["cert"] == "mesh.example.com"
        assert settings["_redirhost"] == "mesh.example.com"
        assert settings["port"] == 443
        assert settings["redirPort"] == 80
        assert settings["allownewtokens"] is True
        assert settings["WebRTC"] == {"enabled": True}
        assert "aliasPort" not in settings
        domain = settings["domains"][""]
        assert domain["title"] == "MeshCentral"
        assert domain["DesktopQuality"] == 100
        assert domain["DesktopDownscale"] is False

    def test_container_ports_pinned_with_custom_mapping(self):
        config = meshconfig.apply_access_address({}, "203.0.113.10", PortConfig(https=8443))
        assert config["settings"]["port"] == 443
        assert config["settings"]["aliasPort"] == 8443

    def test_unrelated_keys_preserved(self):
        config = {"settings": {"mongodb": "mongodb://db"}, "letsencrypt": {"email": "a@b.c"}}
        meshconfig.apply_access_address(config, "x", PortConfig())
        assert config["settings"]["mongodb"] == "mongodb://db"
        assert config["letsencrypt"] == {"email": "a@b.c"}

    def test_idempotent(self):
        once, again = _twice(lambda c: meshconfig.apply_access_address(c, "x", PortConfig(agent=5443)), {})
        assert once == again


class TestOptimization:
    def test_values(self):
        config = meshconfig.apply_optimization({"settings": {"WebRTC": False}})
        settings = config["settings"]
        assert settings["maxoldcons"] == 100
        assert settings["sessionkey"] == "MySessionKey"
        assert settings["WebRTC"]["enabled"] is True
        assert settings["WebRTC"]["iceServers"] == [{"urls": "stun:stun.l.google.com:19302"}]
        domain = settings["domains"][""]
        assert domain["MaxFileTransferSize"] == 0
        assert domain["AllowTerminal"] is True

    def test_idempotent(self):
        once, again = _twice(meshconfig.apply_optimization, {})
        assert once == again


class TestTuning:
    def test_set_webrtc_drops_ice_servers(self):
        config = meshconfig.apply_optimization({})
        meshconfig.set_webrtc(config, False)
        assert config["settings"]["WebRTC"] == {"enabled": False}

    def test_quality_accepts_string(self):
        config = meshconfig.set_desktop_quality({}, "75")
        assert config["settings"]["domains"][""]["DesktopQuality"] == 75

    @pytest.mark.parametrize("value", [0, 101, "high"])
    def test_quality_rejected(self, value):
        with pytest.raises(ConfigError):
            meshconfig.set_desktop_quality({}, value)

    def test_downscale(self):
        config = meshconfig.set_desktop_downscale({}, True)
        assert config["settings"]["domains"][""]["DesktopDownscale"] is True

    def test_recommended(self):
        config = meshconfig.apply_recommended({"settings": {"domains": {"": {"DesktopQuality": 20}}}})
        assert config["settings"]["WebRTC"] == {"enabled": True}
        assert config["settings"]["domains"][""]["DesktopQuality"] == 100


class TestFiles:
    def test_write_and_read(self, tmp_path):
        path = tmp_path / "data" / "config.json"
        meshconfig.write_config(path, meshconfig.default_config("x", PortConfig()))
        assert path.read_text().endswith("}\n")
        assert meshconfig.read_config(path)["settings"]["cert"] == "x"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            meshconfig.read_config(path)

    def test_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[]")
        with pytest.raises(ConfigError):
            meshconfig.read_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            meshconfig.read_config(tmp_path / "config.json")

    def test_backup_name(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{}")
        backup = meshconfig.backup_config(path, "backup", now=datetime(2024, 1, 15, 10, 30, 0))
        assert backup.name == "config.json.backup.20240115_103000"
        assert backup.read_text() == "{}"

    def test_patch_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"settings": {"WebRTC": True}}))
        meshconfig.patch_file(path, lambda c: meshconfig.set_webrtc(c, False), meshconfig.apply_recommended)
        assert json.loads(path.read_text())["settings"]["WebRTC"] == {"enabled": True}
