"""
Wallet Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (MWSLATE_*)
    2. Runtime overrides
    3. User config file (~/.mwslate/config.yaml)
    4. Project config file (./mwslate.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from mwslate.errors import ConfigError

T = TypeVar("T")


class ConfigValidationError(ConfigError):
    """Configuration validation error."""

    kind = "ConfigValidationError"


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == Decimal:
            return Decimal(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class SelectionConfig:
    """Output selection defaults for outgoing negotiations."""
    minimum_confirmations: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10,
        env_var="MWSLATE_MIN_CONFIRMATIONS",
        description="Minimum confirmations for an output to be spendable",
        validator=lambda x: x >= 0,
    ))
    max_outputs: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=500,
        env_var="MWSLATE_MAX_OUTPUTS",
        description="Maximum number of inputs a negotiation may select",
        validator=lambda x: x > 0,
    ))
    num_change_outputs: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="MWSLATE_CHANGE_OUTPUTS",
        description="Number of change outputs to generate",
        validator=lambda x: 1 <= x <= 64,
    ))
    strategy: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="all",
        env_var="MWSLATE_SELECTION_STRATEGY",
        description="Output selection strategy (all, smallest)",
        validator=lambda x: x in ("all", "smallest"),
    ))


@dataclass
class ChainConfig:
    """Consensus parameters the wallet must agree with."""
    base_fee: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1_000_000,
        env_var="MWSLATE_BASE_FEE",
        description="Fee per unit of transaction weight (nano-units)",
        validator=lambda x: x > 0,
    ))
    coinbase_maturity: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1440,
        env_var="MWSLATE_COINBASE_MATURITY",
        description="Blocks before a coinbase output becomes spendable",
        validator=lambda x: x >= 0,
    ))
    block_header_version: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="MWSLATE_BLOCK_HEADER_VERSION",
        description="Highest block header version this wallet understands",
        validator=lambda x: x >= 1,
    ))
    reward: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=60_000_000_000,
        env_var="MWSLATE_BLOCK_REWARD",
        description="Block reward in nano-units",
        validator=lambda x: x > 0,
    ))


@dataclass
class SlateConfig:
    """Negotiation and serialization defaults."""
    target_version: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3,
        env_var="MWSLATE_SLATE_VERSION",
        description="Slate version emitted when no target is requested",
        validator=lambda x: 1 <= x <= 3,
    ))
    num_participants: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2,
        env_var="MWSLATE_NUM_PARTICIPANTS",
        description="Default number of negotiation participants",
        validator=lambda x: x >= 2,
    ))


@dataclass
class LedgerConfig:
    """Ledger client behaviour."""
    fluff: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="MWSLATE_FLUFF",
        description="Broadcast immediately instead of stem relaying",
    ))
    node_api_address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="http://127.0.0.1:3413",
        env_var="MWSLATE_NODE_API",
        description="Address of the node used by networked ledger clients",
    ))


@dataclass
class StoreConfig:
    """Durable store location."""
    data_dir: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=str(Path.home() / ".mwslate" / "wallet_data"),
        env_var="MWSLATE_DATA_DIR",
        description="Directory holding wallet outputs, log and contexts",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="MWSLATE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="MWSLATE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class WalletConfig:
    """
    Root configuration for the wallet.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    slate: SlateConfig = field(default_factory=SlateConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = WalletConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[WalletConfig], None]] = []
        self._initialized = True

    @property
    def config(self) -> WalletConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}", path=str(path))

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Malformed configuration file {path}: {e}", path=str(path)) from e

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {path}", path=str(path))
            self._apply_dict(data)
            if path not in self._config_paths:
                self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist. Returns the files applied."""
        default_paths = [
            Path("mwslate.yaml"),
            Path("config/mwslate.yaml"),
            Path.home() / ".mwslate" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}", key=f"{prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("selection.minimum_confirmations", 1)
        """
        parts = path.split(".")
        obj = self._config

        for part in parts[:-1]:
            obj = getattr(obj, part)

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}", key=path)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("chain.base_fee")
        """
        obj: Any = self._config

        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}", key=path)
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[WalletConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in list(self._config_paths):
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def reset(self) -> None:
        """Drop runtime overrides, loaded files and watchers."""
        self._config = WalletConfig()
        self._config_paths = []
        self._watchers = []

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ValueError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> WalletConfig:
    """Get the current wallet configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
