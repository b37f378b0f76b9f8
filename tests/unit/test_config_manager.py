import math

import pytest

from mcp_optimizer.utils.config_manager import (
    ConfigurationFileError,
    ConfigurationManager,
    ConfigurationValidationError,
    EnvironmentVariableMapper,
    MonitoringConfiguration,
    OptimizerConfiguration,
    load_config,
    validate_configuration,
)
from mcp_optimizer.utils.exceptions import OptimizerError


def test_defaults():
    cfg = ConfigurationManager(environ={}).get_config()
    assert cfg.selection.max_tools_per_task == 7
    assert cfg.selection.success_rate_threshold == 0.7
    assert cfg.routing.cache_ttl_ms == 300_000
    assert cfg.routing.cache_max_entries == 1000
    assert cfg.monitoring.monitoring_interval_ms == 30_000
    assert cfg.monitoring.response_time_threshold_ms == 3000
    assert cfg.monitoring.success_rate_threshold == 0.8
    assert cfg.monitoring.enable_real_time_monitoring is False
    assert cfg.logging.level == "INFO"


def test_load_custom_file(tmp_path):
    cfg_path = tmp_path / "optimizer.yaml"
    cfg_path.write_text("""\
selection:
  max_tools_per_task: 5
routing:
  cache_ttl_ms: 1000
logging:
  level: DEBUG
""")
    cfg = ConfigurationManager(config_path=cfg_path, environ={}).get_config()
    assert cfg.selection.max_tools_per_task == 5
    assert cfg.routing.cache_ttl_ms == 1000
    assert cfg.logging.level == "DEBUG"
    # Untouched sections keep their defaults
    assert cfg.routing.cache_max_entries == 1000


def test_env_override_beats_file(tmp_path):
    cfg_path = tmp_path / "optimizer.yaml"
    cfg_path.write_text("routing:\n  cache_ttl_ms: 1000\nlogging:\n  level: WARNING\n")
    environ = {
        "MCP_OPTIMIZER_CACHE_TTL_MS": "2500",
        "MCP_OPTIMIZER_LOG_LEVEL": "ERROR",
        "MCP_OPTIMIZER_MONITORING_ENABLED": "true",
        "MCP_OPTIMIZER_RESPONSE_TIME_THRESHOLD_MS": "4500",
    }
    cfg = ConfigurationManager(config_path=cfg_path, environ=environ).get_config()
    assert cfg.routing.cache_ttl_ms == 2500
    assert cfg.logging.level == "ERROR"
    assert cfg.monitoring.enable_real_time_monitoring is True
    assert cfg.monitoring.response_time_threshold_ms == 4500


def test_load_from_environment_reads_os_environ(monkeypatch):
    monkeypatch.setenv("MCP_OPTIMIZER_MAX_TOOLS_PER_TASK", "9")
    env_config = EnvironmentVariableMapper.load_from_environment()
    assert env_config["selection"]["max_tools_per_task"] == 9


def test_overrides_win_over_environment():
    cfg = ConfigurationManager(
        overrides={"selection": {"max_tools_per_task": 4}},
        environ={"MCP_OPTIMIZER_MAX_TOOLS_PER_TASK": "9"},
    ).get_config()
    assert cfg.selection.max_tools_per_task == 4


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationFileError):
        load_config(tmp_path / "does-not-exist.yaml")


def test_invalid_yaml_raises(tmp_path):
    cfg_path = tmp_path / "broken.yaml"
    cfg_path.write_text("selection: [unclosed\n")
    with pytest.raises(ConfigurationFileError):
        ConfigurationManager(config_path=cfg_path, environ={}).get_config()


def test_out_of_range_value_raises():
    with pytest.raises(ConfigurationValidationError):
        validate_configuration({"selection": {"max_tools_per_task": 1}})


def test_unknown_key_is_rejected():
    with pytest.raises(ConfigurationValidationError) as excinfo:
        validate_configuration({"routing": {"cache_size": 10}})
    assert isinstance(excinfo.value, OptimizerError)


def test_each_manager_builds_its_own_configuration():
    first = ConfigurationManager(overrides={"routing": {"cache_ttl_ms": 10}}, environ={}).get_config()
    second = ConfigurationManager(environ={}).get_config()
    assert first.routing.cache_ttl_ms == 10
    assert second.routing.cache_ttl_ms == 300_000
    assert first is not second


def test_half_life_of_default_alpha():
    monitoring = MonitoringConfiguration()
    assert monitoring.half_life_events() == pytest.approx(math.log(0.5) / math.log(0.9))
    assert 6.5 < monitoring.half_life_events() < 6.7
    assert monitoring.half_life_events(alpha=1.0) == 1.0


def test_validate_assignment():
    cfg = OptimizerConfiguration()
    with pytest.raises(ValueError):
        cfg.monitoring.success_rate_threshold = 1.5
