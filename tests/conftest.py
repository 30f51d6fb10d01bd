"""Shared test fixtures for liveserve."""

import pytest
from fastapi.testclient import TestClient

from app import create_app
from objects.log_buffer import LogBuffer
from utils.config import ServerConfig
from utils.status_broadcaster import StatusBroadcaster


@pytest.fixture
def log_buffer(tmp_path):
    """Log buffer persisting into a temporary file, without console echo."""
    return LogBuffer(persist_path=str(tmp_path / 'error-logs.json'), log_to_console=False)


@pytest.fixture
def site_root(tmp_path):
    """A small document root with an index, assets and a nested directory."""
    root = tmp_path / 'site'
    root.mkdir()
    (root / 'home.html').write_text('<h1>Home</h1>')
    (root / 'style.css').write_text('body { color: red; }')
    (root / 'script.js').write_text('console.log("hi");')
    (root / 'data.bin.xyz').write_bytes(b'\x00\x01\x02')
    (root / 'game1.html').write_text('<h1>Game</h1>')
    nested = root / 'levels'
    nested.mkdir()
    (nested / 'home.html').write_text('<h1>Levels</h1>')
    return root


@pytest.fixture
def server_config(site_root):
    return ServerConfig(root=str(site_root))


@pytest.fixture
def broadcaster():
    return StatusBroadcaster()


@pytest.fixture
def app(server_config, log_buffer, broadcaster, tmp_path):
    return create_app(server_config, log_buffer, broadcaster, str(tmp_path / 'exports'))


@pytest.fixture
def client(app):
    return TestClient(app)
