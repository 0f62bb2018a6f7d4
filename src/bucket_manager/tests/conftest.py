"""Pytest configuration and shared fixtures"""

import os
import tempfile
from unittest.mock import MagicMock

import pytest
import yaml

from bucket_manager.core.config import Config
from bucket_manager.core.stack import Stack
from bucket_manager.transport.base import SSHHost


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_config_data():
    """Sample configuration data for testing"""
    return {
        "runtime": {
            "cmd": "podman"
        },
        "ssh_hosts": [
            {
                "name": "server1",
                "hostname": "192.168.1.100",
                "user": "deploy",
                "port": 22,
                "password": "test_password",
                "remote_root": "/srv/stacks",
            },
            {
                "name": "server2",
                "hostname": "192.168.1.101",
                "user": "deploy",
                "port": 2222,
                "key_path": "~/.ssh/id_ed25519",
            },
            {
                "name": "old",
                "hostname": "192.168.1.102",
                "user": "deploy",
                "password": "test_password",
                "disabled": True,
            },
        ],
    }


@pytest.fixture
def config_file(temp_dir, sample_config_data):
    """Write the sample configuration to a YAML file"""
    path = os.path.join(temp_dir, "config.yaml")
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f)
    return path


@pytest.fixture
def config(config_file):
    """Loaded sample configuration"""
    return Config(config_file)


@pytest.fixture
def ssh_host():
    """A password-authenticated remote host"""
    return SSHHost(name="server1", hostname="192.168.1.100", user="deploy",
                   password="test_password", remote_root="/srv/stacks")


@pytest.fixture
def local_stack(temp_dir):
    """A local stack directory with a compose file"""
    path = os.path.join(temp_dir, "app")
    os.makedirs(path)
    with open(os.path.join(path, "compose.yaml"), "w") as f:
        f.write("services: {}\n")
    return Stack(name="app", path=path)


@pytest.fixture
def remote_stack(ssh_host):
    """A stack discovered on server1"""
    return Stack(
        name="app",
        path="app",
        server_name="server1",
        is_remote=True,
        host_config=ssh_host,
        absolute_remote_root="/srv/stacks",
    )


@pytest.fixture
def mock_channel():
    """Mock paramiko channel that produces output then EOF"""
    channel = MagicMock()
    channel.recv.side_effect = [b"hello\n", b""]
    channel.recv_stderr.side_effect = [b""]
    channel.recv_exit_status.return_value = 0
    return channel


@pytest.fixture
def mock_ssh_manager(mock_channel):
    """Mock connection manager whose client opens mock_channel"""
    manager = MagicMock()
    client = MagicMock()
    client.get_transport.return_value.open_session.return_value = mock_channel
    manager.get_client.return_value = client
    return manager
