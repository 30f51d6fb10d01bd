"""Tests for server startup: port binding, retries and loop error handling."""

import errno
import socket

import pytest
from fastapi.testclient import TestClient

import app as app_module
from app import base_url, bind_server_socket, create_exception_handler
from utils.config import Config
from utils.errors import PortUnavailable

HOST = '127.0.0.1'


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((HOST, 0))
        return s.getsockname()[1]


@pytest.fixture
def config(tmp_path):
    config = Config(path=str(tmp_path / 'missing.json'), environ={})
    config.host = HOST
    config.port = free_port()
    config.fallback_ports = [free_port()]
    return config


class TestBindServerSocket:
    def test_binds_preferred_port(self, config, log_buffer):
        sock, port = bind_server_socket(config, log_buffer)
        try:
            assert port == config.port
            assert sock.getsockname()[1] == port
        finally:
            sock.close()

    def test_falls_back_when_preferred_is_busy(self, config, log_buffer):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind((HOST, config.port))
            busy.listen(1)
            sock, port = bind_server_socket(config, log_buffer)
            sock.close()
        assert port == config.fallback_ports[0]

    def test_retries_when_port_is_taken_before_bind(self, config, log_buffer, monkeypatch):
        real_bind = app_module.bind_listener
        calls = []

        def flaky_bind(host, port):
            calls.append(port)
            if len(calls) == 1:
                raise OSError(errno.EADDRINUSE, 'Address already in use')
            return real_bind(host, port)

        monkeypatch.setattr(app_module, 'bind_listener', flaky_bind)
        sock, port = bind_server_socket(config, log_buffer)
        sock.close()

        assert len(calls) == 2
        warnings = log_buffer.get_logs('WARNING')
        assert len(warnings) == 1
        assert warnings[0].message.startswith(f'Port {calls[0]} is already in use')

    def test_gives_up_after_max_attempts(self, config, log_buffer, monkeypatch):
        def always_taken(host, port):
            raise OSError(errno.EADDRINUSE, 'Address already in use')

        monkeypatch.setattr(app_module, 'bind_listener', always_taken)
        with pytest.raises(PortUnavailable):
            bind_server_socket(config, log_buffer)
        assert len(log_buffer.get_logs('WARNING')) == config.max_start_attempts

    def test_other_bind_errors_propagate(self, config, log_buffer, monkeypatch):
        def denied(host, port):
            raise OSError(errno.EACCES, 'Permission denied')

        monkeypatch.setattr(app_module, 'bind_listener', denied)
        with pytest.raises(OSError) as excinfo:
            bind_server_socket(config, log_buffer)
        assert excinfo.value.errno == errno.EACCES

    def test_no_free_port(self, config, log_buffer):
        holders = []
        try:
            for port in [config.port] + config.fallback_ports:
                s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                s.bind((HOST, port))
                s.listen(1)
                holders.append(s)
            with pytest.raises(PortUnavailable) as excinfo:
                bind_server_socket(config, log_buffer)
            assert excinfo.value.ports == [config.port] + config.fallback_ports
        finally:
            for s in holders:
                s.close()


class TestBaseUrl:
    @pytest.mark.parametrize('host, expected', [
        ('localhost', 'http://localhost:5500/'),
        ('0.0.0.0', 'http://127.0.0.1:5500/'),
        ('::', 'http://[::1]:5500/'),
        ('::1', 'http://[::1]:5500/'),
    ])
    def test_base_url(self, host, expected):
        assert base_url(host, 5500) == expected


class TestExceptionHandler:
    def test_records_unhandled_task_errors(self, log_buffer):
        handler = create_exception_handler(log_buffer)
        handler(None, {
            'message': 'Task exception was never retrieved',
            'exception': RuntimeError('boom'),
        })
        entry = log_buffer.get_logs('ERROR')[0]
        assert entry.category == 'Unhandled Task Exception'
        assert entry.message == 'Task exception was never retrieved: RuntimeError: boom'


class TestLifespan:
    def test_shutdown_stops_monitor(self, app):
        class Recorder:
            stopped = False

            async def stop(self):
                self.stopped = True

        recorder = Recorder()
        app.state.monitor = recorder
        with TestClient(app) as client:
            assert client.get('/api/v1/health').status_code == 200
        assert recorder.stopped is True
