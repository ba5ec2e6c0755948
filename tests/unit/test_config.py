"""
Unit tests for configuration loading.
"""

import pytest
from pydantic import ValidationError

from docfetch.config import Config, find_config_file


@pytest.mark.unit
class TestConfig:
    def test_defaults(self):
        config = Config()

        assert config.redis.url is None
        assert config.cache.ttl == 30 * 24 * 60 * 60
        assert config.cache.local_ttl == 300
        assert config.cache.compression_threshold == 1024
        assert config.circuit_breaker.failure_threshold == 5
        assert config.circuit_breaker.timeout == 60
        assert config.retry_queue.max_delay == 30
        assert config.scraper.api_key is None

    def test_nested_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DOCFETCH_REDIS__URL", "redis://cache:6379/2")
        monkeypatch.setenv("DOCFETCH_CIRCUIT_BREAKER__FAILURE_THRESHOLD", "8")
        monkeypatch.setenv("DOCFETCH_SCRAPER__API_KEY", "fc-secret")

        config = Config()

        assert config.redis.url == "redis://cache:6379/2"
        assert config.circuit_breaker.failure_threshold == 8
        assert config.scraper.api_key.get_secret_value() == "fc-secret"
        assert "fc-secret" not in repr(config)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "docfetch.yaml"
        path.write_text("retry_queue:\n  initial_delay: 2\n  max_attempts: 3\nmonitoring:\n  log_level: DEBUG\n")

        config = Config.from_yaml(path)

        assert config.retry_queue.initial_delay == 2
        assert config.retry_queue.max_attempts == 3
        assert config.monitoring.log_level == "DEBUG"

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.from_yaml(path).crawl.concurrency == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(tmp_path / "absent.yaml")

    def test_local_ttl_must_be_shorter_than_durable(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"cache": {"ttl": 60, "local_ttl": 120}})

    def test_thresholds_must_be_positive(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"circuit_breaker": {"failure_threshold": 0}})

    def test_log_file_parent_is_created(self, tmp_path):
        log_file = tmp_path / "logs" / "docfetch.log"
        config = Config.model_validate({"monitoring": {"log_file": str(log_file)}})

        assert config.monitoring.log_file == str(log_file)
        assert log_file.parent.is_dir()

    def test_find_config_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_config_file() is None

        (tmp_path / "docfetch.yml").write_text("{}")
        assert find_config_file() == tmp_path / "docfetch.yml"
