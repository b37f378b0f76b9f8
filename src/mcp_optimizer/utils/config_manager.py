"""Configuration Management

Hierarchical configuration for the MCP optimizer, read once when a component is
constructed.

Configuration Hierarchy (highest to lowest precedence):
1. Environment Variables (MCP_OPTIMIZER_* prefix)
2. YAML configuration file passed by the caller
3. Hardcoded Defaults in the Pydantic models

There is deliberately no process-wide instance: every ``ConfigurationManager``
produces its own ``OptimizerConfiguration`` so several optimizers can run side
by side with different settings.
"""

import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic.config import ConfigDict

from .exceptions import OptimizerError

# Configure module logger
logger = logging.getLogger(__name__)

# ============================================================================
# Exceptions
# ============================================================================

class ConfigurationError(OptimizerError):
    """Base exception for configuration management operations."""
    pass

class ConfigurationValidationError(ConfigurationError):
    """Raised when configuration validation fails."""
    pass

class ConfigurationFileError(ConfigurationError):
    """Raised when configuration file operations fail."""
    pass

# ============================================================================
# Configuration Models
# ============================================================================

class SelectionConfiguration(BaseModel):
    """Tool selection settings."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    max_tools_per_task: int = Field(default=7, ge=3, le=50, description="Hard ceiling on tools per task")
    success_rate_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Tools at or below this tracked success rate are never selected")
    default_success_rate: float = Field(default=0.85, ge=0.0, le=1.0, description="Success rate assumed for untracked tools when scoring")
    default_response_time_ms: float = Field(default=1500.0, ge=0.0, description="Latency assumed for untracked tools when scoring")
    prediction_default_success_rate: float = Field(default=0.8, ge=0.0, le=1.0, description="Success rate assumed for untracked tools in predictions")
    prediction_default_response_time_ms: float = Field(default=2000.0, ge=0.0, description="Latency assumed for untracked tools in predictions")
    scoring_rules_path: Optional[str] = Field(None, description="Alternate scoring-rule YAML file")

class RoutingConfiguration(BaseModel):
    """Server routing, decision cache and connection pool settings."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    cache_ttl_ms: int = Field(default=300_000, ge=0, description="Routing decision TTL")
    cache_max_entries: int = Field(default=1000, ge=1, description="Entries kept before eviction kicks in")
    connection_max_idle_ms: int = Field(default=300_000, ge=1, description="Idle time after which a pooled connection is recycled")
    connection_max_requests: int = Field(default=1000, ge=1, description="Requests after which a pooled connection is recycled")
    default_server_success_rate: float = Field(default=0.85, ge=0.0, le=1.0)
    default_server_response_time_ms: float = Field(default=1200.0, ge=0.0)
    recency_decay_days: float = Field(default=30.0, gt=0.0, description="Days for recency confidence to decay to its floor")
    success_rate_threshold: float = Field(default=0.8, ge=0.0, le=1.0, description="Servers below this rate are flagged in recommendations")

class MonitoringConfiguration(BaseModel):
    """Performance monitor settings."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    enable_real_time_monitoring: bool = Field(default=False, description="Start the periodic job when the manager is constructed")
    monitoring_interval_ms: int = Field(default=30_000, ge=10, description="Cadence of the snapshot/trend/alert job")
    response_time_threshold_ms: float = Field(default=3000.0, gt=0.0)
    success_rate_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    # One decay rate per metric type. With alpha = 0.1 a sample's weight halves
    # every ln(0.5) / ln(0.9) ~= 6.6 events.
    success_rate_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    response_time_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    integration_metric_alpha: float = Field(default=0.1, gt=0.0, le=1.0)

    trend_window: int = Field(default=10, ge=1)
    system_alert_window: int = Field(default=5, ge=1)
    snapshot_history_limit: int = Field(default=1000, ge=2)
    snapshot_history_retain: int = Field(default=500, ge=1)
    alert_history_limit: int = Field(default=1000, ge=2)
    alert_history_retain: int = Field(default=500, ge=1)
    report_history_limit: int = Field(default=100, ge=2)
    report_history_retain: int = Field(default=50, ge=1)
    alert_retention_hours: float = Field(default=24.0, gt=0.0)

    def half_life_events(self, alpha: Optional[float] = None) -> float:
        """Number of events after which a sample's weight has halved."""
        alpha = self.success_rate_alpha if alpha is None else alpha
        if alpha >= 1.0:
            return 1.0
        return math.log(0.5) / math.log(1.0 - alpha)

class RegistryConfiguration(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    registry_path: Optional[str] = Field(None, description="Alternate tool registry YAML file")

class LoggingConfiguration(BaseModel):
    """Configuration for logging and observability."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    level: str = Field(default="INFO", description="Default log level")
    enable_structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    log_file: Optional[str] = Field(None, description="Optional rotating log file")
    max_log_size_mb: int = Field(default=10, ge=1, le=1000, description="Maximum log file size (MB)")
    backup_count: int = Field(default=3, ge=0, le=30)

class OptimizerConfiguration(BaseModel):
    """Master configuration containing all optimizer settings."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    config_version: str = Field(default="1.0.0", description="Configuration schema version")

    selection: SelectionConfiguration = Field(default_factory=SelectionConfiguration)
    routing: RoutingConfiguration = Field(default_factory=RoutingConfiguration)
    monitoring: MonitoringConfiguration = Field(default_factory=MonitoringConfiguration)
    registry: RegistryConfiguration = Field(default_factory=RegistryConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

# ============================================================================
# Environment Variable Mapping
# ============================================================================

class EnvironmentVariableMapper:
    """Maps environment variables to configuration fields."""

    ENV_MAPPINGS = {
        "MCP_OPTIMIZER_MAX_TOOLS_PER_TASK": "selection.max_tools_per_task",
        "MCP_OPTIMIZER_SELECTION_SUCCESS_RATE_THRESHOLD": "selection.success_rate_threshold",
        "MCP_OPTIMIZER_SCORING_RULES_PATH": "selection.scoring_rules_path",

        "MCP_OPTIMIZER_CACHE_TTL_MS": "routing.cache_ttl_ms",
        "MCP_OPTIMIZER_CACHE_MAX_ENTRIES": "routing.cache_max_entries",

        "MCP_OPTIMIZER_MONITORING_ENABLED": "monitoring.enable_real_time_monitoring",
        "MCP_OPTIMIZER_MONITORING_INTERVAL_MS": "monitoring.monitoring_interval_ms",
        "MCP_OPTIMIZER_RESPONSE_TIME_THRESHOLD_MS": "monitoring.response_time_threshold_ms",
        "MCP_OPTIMIZER_SUCCESS_RATE_THRESHOLD": "monitoring.success_rate_threshold",

        "MCP_OPTIMIZER_REGISTRY_PATH": "registry.registry_path",

        "MCP_OPTIMIZER_LOG_LEVEL": "logging.level",
        "MCP_OPTIMIZER_LOG_JSON": "logging.enable_structured_logging",
        "MCP_OPTIMIZER_LOG_FILE": "logging.log_file",
    }

    @classmethod
    def load_from_environment(cls, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Load configuration values from environment variables."""
        environ = os.environ if environ is None else environ
        env_config: Dict[str, Any] = {}

        for env_var, config_path in cls.ENV_MAPPINGS.items():
            value = environ.get(env_var)
            if value is not None:
                cls._set_nested_value(env_config, config_path, cls._convert_env_value(value, config_path))
                logger.debug(f"Loaded environment variable: {env_var}={value} -> {config_path}")

        return env_config

    @classmethod
    def _convert_env_value(cls, value: str, config_path: str) -> Any:
        """Convert environment variable string to appropriate type."""
        field_name = config_path.rsplit('.', 1)[-1]

        if field_name.startswith('enable_'):
            return value.lower() in ('true', '1', 'yes', 'on')

        if field_name.endswith(('_ms', '_entries', '_per_task')):
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Invalid integer value for {config_path}: {value}")
                return value

        if field_name.endswith('_threshold'):
            try:
                return float(value)
            except ValueError:
                logger.warning(f"Invalid float value for {config_path}: {value}")
                return value

        return value

    @classmethod
    def _set_nested_value(cls, config_dict: Dict[str, Any], path: str, value: Any) -> None:
        """Set a value in a nested dictionary using dot notation."""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

# ============================================================================
# Configuration Loading
# ============================================================================

class ConfigurationLoader:
    """Handles loading and parsing of configuration files."""

    @staticmethod
    def load_yaml_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            if not file_path.exists():
                logger.debug(f"Configuration file not found: {file_path}")
                return {}

            with open(file_path, 'r', encoding='utf-8') as f:
                content = yaml.safe_load(f) or {}

            if not isinstance(content, dict):
                raise ConfigurationFileError(f"Top-level YAML value in {file_path} must be a mapping")

            logger.debug(f"Loaded configuration from: {file_path}")
            return content

        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error in {file_path}: {e}")
            raise ConfigurationFileError(f"Invalid YAML syntax in {file_path}: {e}") from e
        except OSError as e:
            logger.error(f"Error loading configuration file {file_path}: {e}")
            raise ConfigurationFileError(f"Failed to load {file_path}: {e}") from e

    @staticmethod
    def merge_configurations(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Merge multiple configuration dictionaries with deep merging."""
        def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
            result = base.copy()

            for key, value in override.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = deep_merge(result[key], value)
                else:
                    result[key] = value

            return result

        merged: Dict[str, Any] = {}
        for config in configs:
            merged = deep_merge(merged, config)

        return merged

# ============================================================================
# Configuration Manager
# ============================================================================

class ConfigurationManager:
    """
    Builds an ``OptimizerConfiguration`` from defaults, an optional YAML file
    and the environment.

    The configuration is loaded on first access and then kept; it is not
    hot-reloaded.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self._config_path = Path(config_path).expanduser() if config_path else None
        self._overrides = overrides or {}
        self._environ = environ
        self._config: Optional[OptimizerConfiguration] = None

    def get_config(self) -> OptimizerConfiguration:
        if self._config is None:
            self._config = self._load_configuration()
        return self._config

    def _load_configuration(self) -> OptimizerConfiguration:
        """Load configuration from all sources with proper precedence."""
        configs_to_merge = []

        if self._config_path is not None:
            if not self._config_path.exists():
                raise ConfigurationFileError(f"Configuration file not found: {self._config_path}")
            configs_to_merge.append(ConfigurationLoader.load_yaml_file(self._config_path))

        env_config = EnvironmentVariableMapper.load_from_environment(self._environ)
        if env_config:
            configs_to_merge.append(env_config)
            logger.debug("Loaded environment configuration")

        if self._overrides:
            configs_to_merge.append(self._overrides)

        merged_config = ConfigurationLoader.merge_configurations(*configs_to_merge) if configs_to_merge else {}

        try:
            config = OptimizerConfiguration(**merged_config)
        except ValidationError as e:
            raise ConfigurationValidationError(f"Configuration validation failed: {e}") from e

        logger.info("Optimizer configuration loaded")
        return config

# ============================================================================
# Utility Functions
# ============================================================================

def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> OptimizerConfiguration:
    """Convenience wrapper returning a freshly loaded configuration."""
    return ConfigurationManager(config_path=config_path, overrides=overrides).get_config()

def validate_configuration(config_dict: Dict[str, Any]) -> OptimizerConfiguration:
    """Validate a configuration dictionary."""
    try:
        return OptimizerConfiguration(**config_dict)
    except ValidationError as e:
        raise ConfigurationValidationError(f"Configuration validation failed: {e}") from e
