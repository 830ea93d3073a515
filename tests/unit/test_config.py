"""
Configuration Unit Tests
========================
"""

from pathlib import Path

import pytest

from codetainer.config import DEFAULT_EXEC_TIMEOUT, DEFAULT_SHELL, Config, get_config_dir


class TestGetConfigDir:

    @pytest.mark.unit
    def test_data_dir_from_environment(self, tmp_path):
        config_dir = get_config_dir({"CODETAINER_DATA_DIR": str(tmp_path)})

        assert config_dir == tmp_path / "codetainer"
        assert config_dir.is_dir()


class TestConfigFromEnv:

    @pytest.mark.unit
    def test_defaults(self, tmp_path):
        config = Config.from_env({"CODETAINER_DATA_DIR": str(tmp_path)})

        assert config.database_url == f"sqlite:///{(tmp_path / 'codetainer' / 'codetainer.db').as_posix()}"
        assert config.exec_timeout == DEFAULT_EXEC_TIMEOUT
        assert config.shell == DEFAULT_SHELL
        assert config.files_command == "/codetainer/utils/files"
        assert config.allow_external_access is False
        assert config.cors_origins == ()
        assert config.docker_base_url is None
        assert (config.host, config.port) == ("127.0.0.1", 3000)

    @pytest.mark.unit
    def test_overrides(self, tmp_path):
        config = Config.from_env({
            "CODETAINER_DATABASE_URL": "sqlite:///:memory:",
            "DOCKER_HOST": "tcp://docker:2375",
            "CODETAINER_EXEC_TIMEOUT": "2.5",
            "CODETAINER_SHELL": "/bin/bash -l",
            "CODETAINER_UTILS_DIR": str(tmp_path),
            "ALLOW_EXTERNAL_ACCESS": "true",
            "CORS_ORIGINS": "http://example.com, http://test.com",
            "CODETAINER_LOG_LEVEL": "debug",
            "CODETAINER_PORT": "8080",
        })

        assert config.database_url == "sqlite:///:memory:"
        assert config.docker_base_url == "tcp://docker:2375"
        assert config.exec_timeout == 2.5
        assert config.shell == ("/bin/bash", "-l")
        assert config.utils_dir == Path(tmp_path)
        assert config.allow_external_access is True
        assert config.cors_origins == ("http://example.com", "http://test.com")
        assert config.log_level == "DEBUG"
        assert config.port == 8080

    @pytest.mark.unit
    def test_config_is_immutable(self, tmp_path):
        config = Config.from_env({"CODETAINER_DATA_DIR": str(tmp_path)})

        with pytest.raises(AttributeError):
            config.exec_timeout = 1
