"""
Tests for runtime settings.
"""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
from promptforge.config import DEFAULT_KDF_ITERATIONS, Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.kdf_iterations == DEFAULT_KDF_ITERATIONS == 100_000
        assert settings.stream is True
        assert settings.retry_attempts == 2
        assert settings.master_password is None

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            Settings().stream = False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"kdf_iterations": 0},
            {"retry_attempts": -1},
            {"retry_delay": -0.5},
            {"flush_interval": -1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            Settings(**kwargs)


class TestFromEnv:
    def test_empty_environment_uses_defaults(self):
        settings = Settings.from_env({})
        assert settings.data_dir == Path("~/.promptforge").expanduser()
        assert settings.sqlite_path == settings.data_dir / "promptforge.sqlite"
        assert settings.request_timeout == 60.0
        assert settings.log_level == "INFO"

    def test_reads_variables(self, tmp_path):
        settings = Settings.from_env(
            {
                "PROMPTFORGE_DATA_DIR": str(tmp_path),
                "PROMPTFORGE_KDF_ITERATIONS": "1000",
                "PROMPTFORGE_STREAM": "no",
                "PROMPTFORGE_RETRY_ATTEMPTS": "0",
                "PROMPTFORGE_REQUEST_TIMEOUT": "",
                "PROMPTFORGE_OLLAMA_HOST": "http://gpu:11434",
                "PROMPTFORGE_MASTER_PASSWORD": "hunter2",
                "LOG_LEVEL": "debug",
            }
        )
        assert settings.data_dir == tmp_path
        assert settings.sqlite_path == tmp_path / "promptforge.sqlite"
        assert settings.kdf_iterations == 1000
        assert settings.stream is False
        assert settings.retry_attempts == 0
        assert settings.request_timeout is None
        assert settings.ollama_host == "http://gpu:11434"
        assert settings.master_password == "hunter2"
        assert settings.log_level == "DEBUG"

    def test_explicit_sqlite_path(self, tmp_path):
        path = tmp_path / "elsewhere" / "db.sqlite"
        settings = Settings.from_env({"PROMPTFORGE_SQLITE_PATH": str(path)})
        assert settings.sqlite_path == path

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("PROMPTFORGE_HISTORY_LIMIT", "7")
        assert Settings.from_env().history_limit == 7

    def test_ensure_directories(self, tmp_path):
        settings = Settings(
            data_dir=tmp_path / "data", sqlite_path=tmp_path / "db" / "x.sqlite"
        )
        settings.ensure_directories()
        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "db").is_dir()
