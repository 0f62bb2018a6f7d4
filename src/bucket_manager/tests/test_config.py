"""Tests for Config loading, validation and saving"""

import os
import stat

import pytest
import yaml

from bucket_manager.core.config import Config, default_config_path, resolve_path
from bucket_manager.core.errors import ConfigError
from bucket_manager.transport.base import SSHHost


class TestConfigLoad:
    """Test configuration loading"""

    def test_missing_file_is_empty(self, temp_dir):
        """Test that a missing file yields defaults"""
        config = Config(os.path.join(temp_dir, "missing.yaml"))
        assert config.data == {}
        assert config.ssh_hosts == []
        assert config.local_root is None
        assert config.compose_cmd == "podman"

    def test_hosts(self, config):
        """Test parsing of ssh_hosts entries"""
        names = [host.name for host in config.ssh_hosts]
        assert names == ["server1", "server2", "old"]
        assert [host.name for host in config.enabled_hosts] == ["server1", "server2"]

        server2 = config.get_host("server2")
        assert server2.port == 2222
        assert server2.key_path == "~/.ssh/id_ed25519"
        assert server2.password is None
        assert config.get_host("server1").remote_root == "/srv/stacks"
        assert config.get_host("missing") is None

    def test_invalid_yaml(self, temp_dir):
        """Test that unparsable YAML is a config error"""
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            f.write("ssh_hosts: [unclosed\n")
        with pytest.raises(ConfigError, match="failed to parse"):
            Config(path)

    def test_non_mapping(self, temp_dir):
        """Test that a YAML list at top level is rejected"""
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            f.write("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            Config(path)

    def test_malformed_host_entry_is_skipped(self, temp_dir):
        """Test that a non-mapping host entry is ignored"""
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.dump({"ssh_hosts": ["just-a-string", {"name": "s", "hostname": "h", "user": "u"}]}, f)
        assert [host.name for host in Config(path).ssh_hosts] == ["s"]

    def test_custom_compose_cmd(self, temp_dir):
        """Test the runtime.cmd override"""
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.dump({"runtime": {"cmd": "docker"}}, f)
        assert Config(path).compose_cmd == "docker"

    def test_default_path_honours_xdg(self, monkeypatch, temp_dir):
        """Test the default config location"""
        monkeypatch.setenv("XDG_CONFIG_HOME", temp_dir)
        assert default_config_path() == os.path.join(temp_dir, "bucket-manager", "config.yaml")

    def test_resolve_path(self, monkeypatch):
        """Test tilde expansion"""
        monkeypatch.setenv("HOME", "/home/tester")
        assert resolve_path("~/bucket") == "/home/tester/bucket"
        assert resolve_path("/srv/stacks") == "/srv/stacks"


class TestConfigValidate:
    """Test configuration validation"""

    def test_valid(self, config):
        """Test that the sample configuration is valid"""
        assert config.validate() == []

    def test_problems(self, temp_dir):
        """Test each validation rule"""
        path = os.path.join(temp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.dump({"ssh_hosts": [
                {"name": "a", "hostname": "h", "user": "u"},
                {"name": "a", "hostname": "h", "user": "u"},
                {"name": "local", "hostname": "h", "user": "u"},
                {"name": "x:y", "hostname": "h", "user": "u"},
                {"name": "nohost", "user": "u"},
                {"name": "badport", "hostname": "h", "user": "u", "port": 70000},
                {"hostname": "h", "user": "u"},
            ]}, f)

        problems = Config(path).validate()

        assert "ssh host a: duplicate name" in problems
        assert "ssh host local: 'local' is a reserved name" in problems
        assert "ssh host x:y: name must not contain ':'" in problems
        assert "ssh host nohost: hostname is required" in problems
        assert "ssh host badport: invalid port 70000" in problems
        assert "ssh host #7: name is required" in problems


class TestConfigSave:
    """Test writing configuration back"""

    def test_save_round_trip(self, temp_dir):
        """Test that saved hosts load back and the file is not world readable"""
        path = os.path.join(temp_dir, "nested", "config.yaml")
        config = Config(path)
        config.set_hosts([SSHHost(name="s1", hostname="10.0.0.1", user="u", port=2200, password="pw")])
        config.save()

        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode == 0o640

        reloaded = Config(path)
        host = reloaded.get_host("s1")
        assert host.port == 2200
        assert host.password == "pw"
        assert reloaded.data["ssh_hosts"][0] == {
            "name": "s1", "hostname": "10.0.0.1", "user": "u", "port": 2200, "password": "pw",
        }


class TestConfigSetters:
    """Test in-memory configuration edits"""

    def test_set_local_root(self, config):
        """Test setting and clearing the local root override"""
        config.set_local_root("~/stacks")
        assert config.local_root == "~/stacks"

        config.set_local_root("")
        assert config.local_root is None
        assert "local_root" not in config.data

    def test_set_local_root_rejects_relative(self, config):
        """Test that a relative path is refused"""
        with pytest.raises(ConfigError, match="absolute"):
            config.set_local_root("stacks")

    def test_set_compose_cmd(self, config):
        """Test that the runtime is normalised and other runtime keys survive"""
        config.data["runtime"]["extra"] = "kept"
        config.set_compose_cmd("DOCKER")
        assert config.compose_cmd == "docker"
        assert config.runtime_config["extra"] == "kept"

        with pytest.raises(ConfigError, match="podman, docker"):
            config.set_compose_cmd("nerdctl")
