"""
tsbuf Configuration Management

Provides centralized configuration management for the buffering pipeline.
Loads settings from JSON files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass


@dataclass
class StorageConfig:
    """Storage-related configuration."""
    base_path: str
    store_path: str
    wal_path: str
    export_path: str
    logs_path: str


@dataclass
class SchedulerConfig:
    """Tick interval and promotion thresholds."""
    tick_interval_ms: int
    memory_buffer_capacity: int
    event_threshold: int
    combined_persistent_threshold: int
    auto_export_enabled: bool
    unify_export_triggers: bool


@dataclass
class PersistentTierConfig:
    """Persistent (tier 1) key-value store configuration."""
    backend: str
    max_store_bytes: Optional[int]
    min_free_disk_mb: int
    rebuffer_on_store_failure: bool


@dataclass
class MemoryBufferConfig:
    """Memory (tier 0) buffer configuration."""
    wal_enabled: bool


@dataclass
class ExportConfig:
    """External sink (tier 2) configuration."""
    sink: str
    payload_format: str
    http_url: Optional[str]
    http_timeout_s: float


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    console_output: bool


@dataclass
class DebugConfig:
    """Debug configuration."""
    enabled: bool


# Option names used by the browser-era configuration, mapped onto sections
CAMEL_CASE_ALIASES = {
    'tickIntervalMs': ('scheduler', 'tick_interval_ms'),
    'memoryBufferCapacity': ('scheduler', 'memory_buffer_capacity'),
    'eventThreshold': ('scheduler', 'event_threshold'),
    'combinedPersistentThreshold': ('scheduler', 'combined_persistent_threshold'),
    'autoExportEnabled': ('scheduler', 'auto_export_enabled'),
}

INT_KEYS = {
    'tick_interval_ms', 'memory_buffer_capacity', 'event_threshold',
    'combined_persistent_threshold', 'max_store_bytes', 'min_free_disk_mb',
}
FLOAT_KEYS = {'http_timeout_s'}
BOOL_KEYS = {
    'auto_export_enabled', 'unify_export_triggers', 'rebuffer_on_store_failure',
    'wal_enabled', 'console_output', 'enabled',
}

VALID_BACKENDS = ("file", "memory")
VALID_SINKS = ("file", "http", "memory")
VALID_PAYLOAD_FORMATS = ("double_encoded", "structured")


def _coerce(key: str, value: Any) -> Any:
    """Convert string values (env vars, hand-written JSON) to the field's type."""
    if not isinstance(value, str):
        return value
    if key in INT_KEYS:
        return int(value)
    if key in FLOAT_KEYS:
        return float(value)
    if key in BOOL_KEYS:
        return value.lower() in ('true', '1', 'yes', 'on')
    return value


class BufferConfig:
    """Main tsbuf configuration manager."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to JSON config file. If None, uses the packaged defaults.
            overrides: Nested dict (or camelCase aliases) applied after files and env vars.
        """
        self.config_path = config_path
        self._config_data = {}
        self._load_config()
        if overrides:
            self._merge_configs(self._config_data, self._expand_aliases(overrides))
        self._create_config_objects()
        self._validate()

    def _load_config(self):
        """Load configuration from JSON file and environment variables."""
        default_config_path = Path(__file__).parent / "default_config.json"
        if default_config_path.exists():
            with open(default_config_path, 'r') as f:
                self._config_data = json.load(f)
        else:
            raise FileNotFoundError(f"Default config file not found: {default_config_path}")

        if self.config_path:
            config_path = Path(self.config_path)
            if config_path.exists():
                with open(config_path, 'r') as f:
                    custom_config = json.load(f)
                    self._merge_configs(self._config_data, self._expand_aliases(custom_config))
            else:
                raise FileNotFoundError(f"Config file not found: {config_path}")

        self._load_env_overrides()

    def _expand_aliases(self, custom: dict) -> dict:
        """Move top-level camelCase options into their sections."""
        expanded = {}
        for key, value in custom.items():
            if key in CAMEL_CASE_ALIASES:
                section, field_name = CAMEL_CASE_ALIASES[key]
                expanded.setdefault(section, {})[field_name] = value
            elif isinstance(value, dict) and isinstance(expanded.get(key), dict):
                expanded[key].update(value)
            else:
                expanded[key] = value
        return expanded

    def _merge_configs(self, default: dict, custom: dict):
        """Recursively merge custom config into default config."""
        for key, value in custom.items():
            if key in default and isinstance(default[key], dict) and isinstance(value, dict):
                self._merge_configs(default[key], value)
            else:
                default[key] = _coerce(key, value)

    def _load_env_overrides(self):
        """Load configuration overrides from environment variables."""
        env_mappings = {
            'TSBUF_STORAGE_PATH': ('storage', 'base_path'),
            'TSBUF_TICK_INTERVAL_MS': ('scheduler', 'tick_interval_ms'),
            'TSBUF_BUFFER_CAPACITY': ('scheduler', 'memory_buffer_capacity'),
            'TSBUF_EVENT_THRESHOLD': ('scheduler', 'event_threshold'),
            'TSBUF_COMBINED_THRESHOLD': ('scheduler', 'combined_persistent_threshold'),
            'TSBUF_AUTO_EXPORT': ('scheduler', 'auto_export_enabled'),
            'TSBUF_SINK': ('export', 'sink'),
            'TSBUF_HTTP_URL': ('export', 'http_url'),
            'TSBUF_LOG_LEVEL': ('logging', 'level'),
            'TSBUF_DEBUG': ('debug', 'enabled'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}
                self._config_data[section][key] = _coerce(key, value)

    def _create_config_objects(self):
        """Create typed configuration objects from loaded data."""
        self.storage = StorageConfig(**self._config_data['storage'])
        self.scheduler = SchedulerConfig(**self._config_data['scheduler'])
        self.persistent_tier = PersistentTierConfig(**self._config_data['persistent_tier'])
        self.memory_buffer = MemoryBufferConfig(**self._config_data['memory_buffer'])
        self.export = ExportConfig(**self._config_data['export'])
        self.logging = LoggingConfig(**self._config_data['logging'])
        self.debug = DebugConfig(**self._config_data['debug'])

    def _validate(self):
        """Reject values the pipeline cannot run with."""
        if self.scheduler.tick_interval_ms <= 0:
            raise ValueError(f"tick_interval_ms must be positive, got {self.scheduler.tick_interval_ms}")
        for name in ('memory_buffer_capacity', 'event_threshold', 'combined_persistent_threshold'):
            if getattr(self.scheduler, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self.scheduler, name)}")
        if self.persistent_tier.backend not in VALID_BACKENDS:
            raise ValueError(f"Unknown persistent tier backend: {self.persistent_tier.backend!r}")
        if self.export.sink not in VALID_SINKS:
            raise ValueError(f"Unknown export sink: {self.export.sink!r}")
        if self.export.payload_format not in VALID_PAYLOAD_FORMATS:
            raise ValueError(f"Unknown payload format: {self.export.payload_format!r}")
        if self.export.sink == "http" and not self.export.http_url:
            raise ValueError("export.http_url is required when export.sink is 'http'")

    def get_storage_path(self) -> Path:
        """Get the main storage path as a Path object."""
        return Path(self.storage.base_path)

    def get_store_path(self) -> Path:
        """Get the persistent tier directory."""
        return self.get_storage_path() / self.storage.store_path

    def get_wal_path(self) -> Path:
        """Get the WAL storage path."""
        return self.get_storage_path() / self.storage.wal_path

    def get_export_path(self) -> Path:
        """Get the directory the file sink writes dumps to."""
        return self.get_storage_path() / self.storage.export_path

    def get_logs_path(self) -> Path:
        """Get the logs storage path."""
        return self.get_storage_path() / self.storage.logs_path

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        return json.loads(json.dumps(self._config_data))

    def save_to_file(self, path: str):
        """Save current configuration to JSON file."""
        with open(path, 'w') as f:
            json.dump(self._config_data, f, indent=2)

    def __repr__(self) -> str:
        return f"BufferConfig(config_path={self.config_path})"


# Global configuration instance
_global_config: Optional[BufferConfig] = None


def get_config(config_path: Optional[str] = None) -> BufferConfig:
    """
    Get the global tsbuf configuration instance.

    Args:
        config_path: Path to config file. Only used on first call.

    Returns:
        BufferConfig instance
    """
    global _global_config
    if _global_config is None:
        _global_config = BufferConfig(config_path)
    return _global_config


def reset_config():
    """Reset the global configuration (mainly for testing)."""
    global _global_config
    _global_config = None
