"""Tests for configuration loading and precedence."""

from __future__ import annotations

from pathlib import Path

import pytest
from aiohttp import web

from graceserve.config import (
    ConfigError,
    ServerConfig,
    StaticConfig,
    get_config,
    load_config_file,
    server_options,
)
from graceserve.server import Server


class TestLoadConfigFile:
    """Reading the TOML file."""

    def test_none_means_no_file(self) -> None:
        """Should return empty dict when no path is given."""
        assert load_config_file(None) == {}

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """A config file that isn't there contributes nothing."""
        assert load_config_file(tmp_path / "nonexistent.toml") == {}

    def test_parses_tables(self, tmp_path: Path) -> None:
        """Each TOML table becomes a section dict."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text("""
        [server]
        address = "0.0.0.0:9000"
        """)
        result = load_config_file(config_file)
        assert result["server"]["address"] == "0.0.0.0:9000"

    def test_invalid_toml_raises(self, tmp_path: Path) -> None:
        """Should raise ConfigError on a syntax error."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text("[server\naddress = ")
        with pytest.raises(ConfigError, match="Cannot read config file"):
            load_config_file(config_file)


class TestGetConfig:
    """Merging defaults, file, environment and CLI overrides."""

    def test_returns_defaults_with_no_sources(self, tmp_path: Path) -> None:
        """With nothing configured every section keeps its defaults."""
        config = get_config(config_path=tmp_path / "none.toml", env={})

        assert config.server.address == "127.0.0.1:8080"
        assert config.server.shutdown_timeout == 5.0
        assert config.static.directory is None
        assert config.static.prefix == "/static"
        assert config.static.cache_ttl == 30.0
        assert config.logging.level == "info"

    def test_file_values_applied(self, tmp_path: Path) -> None:
        """Values from the TOML file replace defaults."""
        public = tmp_path / "public"
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text(f"""
        [server]
        address = ":9000"
        write_timeout = 0

        [static]
        directory = "{public.as_posix()}"
        cache_ttl = 600

        [logging]
        format = "json"
        """)

        config = get_config(config_path=config_file, env={})

        assert config.server.address == ":9000"
        assert config.server.write_timeout == 0
        assert config.static.directory == public
        assert config.static.cache_ttl == 600
        assert config.logging.format == "json"

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        """GRACESERVE_* variables win over the file."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text("""
        [server]
        address = ":8000"
        shutdown_timeout = 1.0

        [static]
        cache_ttl = 10
        """)

        config = get_config(
            config_path=config_file,
            env={
                "GRACESERVE_ADDRESS": ":9000",
                "GRACESERVE_CACHE_TTL": "0",
            },
        )

        assert config.server.address == ":9000"
        assert config.server.shutdown_timeout == 1.0
        assert config.static.cache_ttl == 0

    def test_config_path_from_env(self, tmp_path: Path) -> None:
        """GRACESERVE_CONFIG_PATH should name the file when no path is given."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text('[static]\nprefix = "/assets"\n')

        config = get_config(env={"GRACESERVE_CONFIG_PATH": str(config_file)})

        assert config.static.prefix == "/assets"

    def test_static_dir_from_env(self, tmp_path: Path) -> None:
        """GRACESERVE_STATIC_DIR should be read as an existing path."""
        config = get_config(
            config_path=tmp_path / "none.toml",
            env={"GRACESERVE_STATIC_DIR": str(tmp_path)},
        )
        assert config.static.directory == tmp_path

    @pytest.mark.parametrize(
        ("content", "section"),
        [
            ('[static]\nprefix = "assets"\n', "static"),
            ("[server]\nshutdown_timeout = -1\n", "server"),
            ('[server]\nread_timeout = "slow"\n', "server"),
            ('[logging]\nlevel = "chatty"\n', "logging"),
            ("[server]\nunknown_key = 1\n", "server"),
            ('server = "oops"\n', "server"),
        ],
    )
    def test_invalid_settings_raise_config_error(
        self, tmp_path: Path, content: str, section: str
    ) -> None:
        """Invalid values should surface as ConfigError naming the section."""
        config_file = tmp_path / "graceserve.toml"
        config_file.write_text(content)

        with pytest.raises(ConfigError, match=rf"\[{section}\]"):
            get_config(config_path=config_file, env={})

    def test_invalid_env_number_is_ignored(self, tmp_path: Path) -> None:
        """A malformed numeric variable falls back to the lower layers."""
        config = get_config(
            config_path=tmp_path / "none.toml",
            env={"GRACESERVE_SHUTDOWN_TIMEOUT": "soon"},
        )
        assert config.server.shutdown_timeout == 5.0


class TestModels:
    """Tests for section validation."""

    def test_server_rejects_empty_address(self) -> None:
        with pytest.raises(ValueError, match="address"):
            ServerConfig(address="")

    def test_static_rejects_negative_ttl(self) -> None:
        with pytest.raises(ValueError, match="cache_ttl"):
            StaticConfig(cache_ttl=-1)


class TestServerOptions:
    """Tests for server_options."""

    def test_options_apply_config_to_server(self) -> None:
        """Each ServerConfig field should reach the Server settings."""
        config = ServerConfig(
            address="127.0.0.1:0",
            shutdown_timeout=9.0,
            read_timeout=1.0,
            read_header_timeout=0.5,
            write_timeout=2.0,
            idle_timeout=3.0,
            max_header_bytes=4096,
        )

        async def handler(request: web.BaseRequest) -> web.Response:
            return web.Response()

        server = Server(config.address, handler, *server_options(config))

        assert server.shutdown_timeout == 9.0
        assert server.http.read_timeout == 1.0
        assert server.http.read_header_timeout == 0.5
        assert server.http.write_timeout == 2.0
        assert server.http.idle_timeout == 3.0
        assert server.http.max_header_bytes == 4096
