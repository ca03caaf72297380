"""
Tests for engine configuration.
"""

import pytest

from stackweave.config import EngineConfig


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig.from_env({})

        assert config == EngineConfig()
        assert config.concurrency == 4

    def test_environment_values(self):
        config = EngineConfig.from_env({
            "STACKWEAVE_CONCURRENCY": "8",
            "STACKWEAVE_RESOURCE_TIMEOUT": "30",
            "STACKWEAVE_MAX_ATTEMPTS": " ",
        })

        assert config.concurrency == 8
        assert config.resource_timeout == 30.0
        assert config.max_attempts == EngineConfig().max_attempts

    def test_overrides_win(self):
        config = EngineConfig.from_env({"STACKWEAVE_CONCURRENCY": "8"}, concurrency=2, poll_interval=None)

        assert config.concurrency == 2
        assert config.poll_interval == EngineConfig().poll_interval

    def test_invalid_environment_value(self):
        with pytest.raises(ValueError, match="STACKWEAVE_CONCURRENCY"):
            EngineConfig.from_env({"STACKWEAVE_CONCURRENCY": "many"})

    @pytest.mark.parametrize("kwargs", [
        {"concurrency": 0},
        {"max_attempts": 0},
        {"resource_timeout": 0},
    ])
    def test_rejects_out_of_range(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_to_dict(self):
        assert EngineConfig().to_dict()["backoff_max"] == 30.0
