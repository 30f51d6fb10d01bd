"""Tests for Config loading and the immutable ServerConfig."""

import dataclasses
import json

import pytest

from utils.config import CORS_HEADERS, DEFAULT_CONNECTIVITY_URLS, SECURITY_HEADERS, Config, ServerConfig


def write_config(tmp_path, data):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(data))
    return str(path)


class TestDefaults:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = Config(path=str(tmp_path / 'nope.json'), environ={})
        assert config.host == 'localhost'
        assert config.port == 5500
        assert config.fallback_ports == [3000, 5000, 8000, 8080, 8888, 9000]
        assert config.index == 'home.html'
        assert config.cache is False
        assert config.monitor_interval == 10.0
        assert config.monitor_max_reconnect_attempts == 5
        assert config.monitor_reconnect_delay == 2.0
        assert config.monitor_backoff_factor == 1.5
        assert config.logs_max_entries == 1000
        assert config.logs_persist_entries == 100

    def test_malformed_file_uses_defaults(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{"port": ')
        config = Config(path=str(path), environ={})
        assert config.port == 5500

    def test_non_object_uses_defaults(self, tmp_path):
        config = Config(path=write_config(tmp_path, [1, 2, 3]), environ={})
        assert config.port == 5500


class TestLoad:
    def test_camel_case_keys(self, tmp_path):
        path = write_config(tmp_path, {
            'host': '0.0.0.0',
            'port': 8081,
            'fallbackPorts': [9001, 9002],
            'root': 'static',
            'cache': True,
            'maxStartAttempts': 5,
            'monitor': {
                'enabled': False,
                'url': 'http://localhost:9999/',
                'maxReconnectAttempts': 3,
                'maxReconnectDelay': 12,
            },
            'logs': {'maxEntries': 50, 'persistPath': 'logs.json', 'console': False},
        })
        config = Config(path=path, environ={})
        assert config.host == '0.0.0.0'
        assert config.port == 8081
        assert config.fallback_ports == [9001, 9002]
        assert config.root == 'static'
        assert config.cache is True
        assert config.max_start_attempts == 5
        assert config.monitor_enabled is False
        assert config.monitor_url == 'http://localhost:9999/'
        assert config.monitor_max_reconnect_attempts == 3
        assert config.monitor_max_reconnect_delay == 12.0
        assert config.logs_max_entries == 50
        assert config.logs_persist_path == 'logs.json'
        assert config.logs_console is False

    @pytest.mark.parametrize('data, attribute, default', [
        ({'port': 70000}, 'port', 5500),
        ({'port': 'http'}, 'port', 5500),
        ({'fallbackPorts': [3000, 0]}, 'fallback_ports', [3000, 5000, 8000, 8080, 8888, 9000]),
        ({'maxStartAttempts': 0}, 'max_start_attempts', 3),
        ({'monitor': {'interval': -1}}, 'monitor_interval', 10.0),
        ({'monitor': {'backoffFactor': 'fast'}}, 'monitor_backoff_factor', 1.5),
        ({'logs': {'maxEntries': True}}, 'logs_max_entries', 1000),
        ({'host': 8080}, 'host', 'localhost'),
        ({'index': ''}, 'index', 'home.html'),
        ({'monitor': {'commonPorts': '3000'}}, 'monitor_common_ports', [3000, 5000, 5500, 8000, 8080, 8888, 9000]),
        ({'monitor': {'commonPorts': [3000, 70000]}}, 'monitor_common_ports', [3000, 5000, 5500, 8000, 8080, 8888, 9000]),
        ({'monitor': {'connectivityUrls': 'https://example.com/'}}, 'monitor_connectivity_urls', DEFAULT_CONNECTIVITY_URLS),
        ({'monitor': {'connectivityUrls': [None]}}, 'monitor_connectivity_urls', DEFAULT_CONNECTIVITY_URLS),
        ({'monitor': {'userAgent': ['x']}}, 'monitor_user_agent', 'liveserve-monitor'),
        ({'monitor': {'url': 42}}, 'monitor_url', None),
        ({'logs': {'persistPath': {}}}, 'logs_persist_path', 'error-logs.json'),
        ({'logs': {'persistDelay': 0}}, 'logs_persist_delay', 1.0),
    ])
    def test_invalid_values_keep_defaults(self, tmp_path, data, attribute, default):
        config = Config(path=write_config(tmp_path, data), environ={})
        assert getattr(config, attribute) == default

    def test_valid_lists_and_strings(self, tmp_path):
        path = write_config(tmp_path, {'monitor': {
            'commonPorts': [4000, 4001],
            'connectivityUrls': ['https://example.com/'],
            'userAgent': 'custom-agent',
        }})
        config = Config(path=path, environ={})
        assert config.monitor_common_ports == [4000, 4001]
        assert config.monitor_connectivity_urls == ['https://example.com/']
        assert config.monitor_user_agent == 'custom-agent'


class TestEnvironment:
    def test_env_overrides(self, tmp_path):
        path = write_config(tmp_path, {'host': 'localhost', 'port': 8081})
        config = Config(path=path, environ={'HOST': '127.0.0.1', 'PORT': '9090'})
        assert config.host == '127.0.0.1'
        assert config.port == 9090

    def test_invalid_env_port_ignored(self, tmp_path):
        path = write_config(tmp_path, {'port': 8081})
        assert Config(path=path, environ={'PORT': 'abc'}).port == 8081
        assert Config(path=path, environ={'PORT': '0'}).port == 8081


class TestServerConfig:
    def test_built_from_config(self, tmp_path):
        config = Config(path=write_config(tmp_path, {'root': 'public', 'index': 'index.html'}), environ={})
        server = config.server
        assert server.root == 'public'
        assert server.index == 'index.html'

    def test_is_frozen(self):
        server = ServerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            server.root = '/etc'

    def test_maps_are_read_only(self):
        server = ServerConfig()
        with pytest.raises(TypeError):
            server.mime_types['.exe'] = 'application/x-msdownload'

    def test_content_type_lookup(self):
        server = ServerConfig()
        assert server.content_type('.HTML') == 'text/html'
        assert server.content_type('.woff2') == 'font/woff2'
        assert server.content_type('.unknown') == 'application/octet-stream'
        assert server.content_type('') == 'application/octet-stream'

    def test_response_headers(self):
        assert ServerConfig().response_headers() == {**CORS_HEADERS, **SECURITY_HEADERS}
        assert ServerConfig(cors=False).response_headers() == SECURITY_HEADERS
