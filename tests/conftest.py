"""
Shared fixtures: throwaway private keys and a stub ssh-agent.
"""

import paramiko
import pytest

KEY_PASSPHRASE = "correct horse"


@pytest.fixture(scope="session")
def key_dir(tmp_path_factory):
    path = tmp_path_factory.mktemp("keys")
    key = paramiko.RSAKey.generate(2048)
    key.write_private_key_file(str(path / "id_plain"))
    key.write_private_key_file(str(path / "id_encrypted"), password=KEY_PASSPHRASE)
    (path / "id_garbage").write_text("-----BEGIN NONSENSE-----\nnot a key\n")
    return path


@pytest.fixture
def plain_key(key_dir):
    return str(key_dir / "id_plain")


@pytest.fixture
def encrypted_key(key_dir):
    return str(key_dir / "id_encrypted")


@pytest.fixture
def garbage_key(key_dir):
    return str(key_dir / "id_garbage")


class StubAgent:
    """Stands in for SocketAgent."""

    def __init__(self, keys=None):
        self.keys = list(keys or [])
        self.closed = False

    def get_keys(self):
        return tuple(self.keys)

    def close(self):
        self.closed = True


class AgentFactory:
    """Counts how often an agent connection is opened."""

    def __init__(self, keys=None):
        self.keys = keys
        self.created = []
        self.paths = []

    def __call__(self, socket_path):
        self.paths.append(socket_path)
        agent = StubAgent(self.keys)
        self.created.append(agent)
        return agent


@pytest.fixture
def agent_env():
    return {"SSH_AUTH_SOCK": "/tmp/ssh-test/agent.sock"}
