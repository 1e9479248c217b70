"""
Unit tests for configuration and the command line.
"""

import pytest

from siteserver.__main__ import build_config, build_parser
from siteserver.config import ServerConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "SITE_HOST", "SITE_PORT", "SITE_WORKERS", "SITE_QUEUE_SIZE",
        "SITE_TIMEOUT", "SITE_CONNECTION_LIFETIME", "SITE_CONTENT_DIR",
        "SITE_ERROR_DIR", "SITE_INDEX_FILE", "SITE_CACHE_MAX_AGE", "SITE_RATE_LIMIT_WINDOW",
        "SITE_RATE_LIMIT_MAX_REQUESTS", "SITE_CORS_ORIGIN", "SITE_LOG_LEVEL",
        "SITE_LOG_FORMAT", "SITE_ACCESS_LOG",
    ):
        monkeypatch.delenv(name, raising=False)


class TestServerConfig:

    def test_defaults(self):
        config = ServerConfig()

        assert config.port == 8000
        assert config.content_dir == "public_html"
        assert config.error_dir == "server_assets"
        assert config.index_file == "index.html"
        assert config.rate_limit_window == 60.0
        assert config.rate_limit_max_requests == 100
        assert config.cors_allow_origin == "*"
        assert config.access_log_file == "server.log"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SITE_PORT", "9000")
        monkeypatch.setenv("SITE_WORKERS", "8")
        monkeypatch.setenv("SITE_RATE_LIMIT_MAX_REQUESTS", "5")
        monkeypatch.setenv("SITE_RATE_LIMIT_WINDOW", "2.5")
        monkeypatch.setenv("SITE_CORS_ORIGIN", "https://example.com")
        monkeypatch.setenv("SITE_ACCESS_LOG", "")
        monkeypatch.setenv("SITE_CACHE_MAX_AGE", "300")

        config = ServerConfig.from_env()

        assert config.port == 9000
        assert config.max_workers == 8
        assert config.rate_limit_max_requests == 5
        assert config.rate_limit_window == 2.5
        assert config.cors_allow_origin == "https://example.com"
        assert config.access_log_file is None
        assert config.cache_max_age == 300

    def test_validate_accepts_good_config(self, site_root):
        ServerConfig(content_dir=str(site_root)).validate()

    @pytest.mark.parametrize("overrides", [
        {"port": 70000},
        {"max_workers": 0},
        {"queue_size": -1},
        {"timeout": 0},
        {"connection_lifetime": -1},
        {"keep_alive_timeout": 0},
        {"keep_alive_timeout": -1.5},
        {"cache_max_age": -1},
        {"rate_limit_window": 0},
        {"rate_limit_max_requests": 0},
        {"index_file": "../index.html"},
        {"log_format": "xml"},
    ])
    def test_validate_rejects(self, site_root, overrides):
        config = ServerConfig(content_dir=str(site_root), **overrides)
        with pytest.raises(ValueError):
            config.validate()

    def test_validate_missing_content_dir(self, tmp_path):
        with pytest.raises(ValueError):
            ServerConfig(content_dir=str(tmp_path / "nope")).validate()


class TestCommandLine:

    def test_flags_override_env(self, monkeypatch):
        monkeypatch.setenv("SITE_PORT", "9000")
        monkeypatch.setenv("SITE_WORKERS", "8")

        args = build_parser().parse_args(["--port", "7000", "-c", "site", "--rate-limit", "3"])
        config = build_config(args)

        assert config.port == 7000
        assert config.max_workers == 8
        assert config.content_dir == "site"
        assert config.rate_limit_max_requests == 3

    def test_unset_flags_keep_defaults(self):
        config = build_config(build_parser().parse_args([]))
        assert config == ServerConfig()

    def test_cache_max_age_flag(self):
        config = build_config(build_parser().parse_args(["--cache-max-age", "3600"]))
        assert config.cache_max_age == 3600

    def test_empty_access_log_disables(self):
        config = build_config(build_parser().parse_args(["--access-log", ""]))
        assert config.access_log_file is None

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert "siteserver 1.0.0" in capsys.readouterr().out
