"""YAML configuration parser for runtimekit.

This module parses the optional ``$RUNTIMEKIT_HOME/config.yaml`` file into
typed dataclasses. A missing file yields the defaults.

Example config.yaml::

    network:
      timeout: 30
      max_attempts: 4
    resolution:
      order: [project, environment, global]
      ceiling: ~/src
    migration:
      copy: true
    mirrors:
      node: https://npmmirror.com/mirrors/node
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from runtimekit.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

CEILING_ENV_VAR = "RUNTIMEKIT_PIN_CEILING"

RESOLUTION_SOURCES = ("environment", "project", "global")
ACTIVATION_STRATEGIES = ("auto", "symlink", "junction", "copy")


@dataclass
class NetworkConfig:
    """Retry and timeout policy for remote fetches."""

    timeout: float = 30.0
    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_max: float = 8.0


@dataclass
class CatalogConfig:
    """Release catalog caching."""

    max_age_hours: float = 24.0


@dataclass
class ResolutionConfig:
    """Precedence of version sources after the explicit argument."""

    order: List[str] = field(default_factory=lambda: list(RESOLUTION_SOURCES))
    ceiling: Optional[Path] = None


@dataclass
class MigrationConfig:
    """How foreign installs are imported."""

    copy: bool = False  # False: reference foreign files in place


@dataclass
class ActivationConfig:
    strategy: str = "auto"


@dataclass
class LockConfig:
    timeout: float = 30.0
    install_timeout: float = 600.0


@dataclass
class RuntimeKitConfig:
    """Complete runtimekit configuration."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    activation: ActivationConfig = field(default_factory=ActivationConfig)
    locks: LockConfig = field(default_factory=LockConfig)
    mirrors: Dict[str, str] = field(default_factory=dict)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _number(section: Dict[str, Any], key: str, default: float, minimum: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def parse_config(data: Optional[Dict[str, Any]]) -> RuntimeKitConfig:
    """
    Build a RuntimeKitConfig from already-loaded YAML data.

    Args:
        data: Parsed YAML mapping (None is treated as empty)

    Returns:
        Validated configuration

    Raises:
        ConfigError: If a section or value is invalid
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    net = _section(data, "network")
    network = NetworkConfig(
        timeout=_number(net, "timeout", 30.0, 0.1),
        max_attempts=int(_number(net, "max_attempts", 4, 1)),
        backoff_base=_number(net, "backoff_base", 0.5, 0),
        backoff_max=_number(net, "backoff_max", 8.0, 0),
    )

    cat = _section(data, "catalog")
    catalog = CatalogConfig(max_age_hours=_number(cat, "max_age_hours", 24.0, 0))

    res = _section(data, "resolution")
    order = res.get("order", list(RESOLUTION_SOURCES))
    if not isinstance(order, list) or not order:
        raise ConfigError("'resolution.order' must be a non-empty list")
    unknown = [s for s in order if s not in RESOLUTION_SOURCES]
    if unknown:
        raise ConfigError(
            f"Unknown resolution source(s) {unknown}; "
            f"expected some of {list(RESOLUTION_SOURCES)}"
        )
    if len(set(order)) != len(order):
        raise ConfigError("'resolution.order' contains duplicates")
    ceiling = res.get("ceiling")
    resolution = ResolutionConfig(
        order=list(order),
        ceiling=Path(ceiling).expanduser() if ceiling else None,
    )

    mig = _section(data, "migration")
    migration = MigrationConfig(copy=bool(mig.get("copy", False)))

    act = _section(data, "activation")
    strategy = act.get("strategy", "auto")
    if strategy not in ACTIVATION_STRATEGIES:
        raise ConfigError(
            f"Unknown activation strategy '{strategy}'; "
            f"expected one of {list(ACTIVATION_STRATEGIES)}"
        )
    activation = ActivationConfig(strategy=strategy)

    lk = _section(data, "locks")
    locks = LockConfig(
        timeout=_number(lk, "timeout", 30.0, 0),
        install_timeout=_number(lk, "install_timeout", 600.0, 0),
    )

    mirrors = _section(data, "mirrors")
    for runtime, url in mirrors.items():
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ConfigError(f"Mirror for '{runtime}' must be an http(s) URL")

    return RuntimeKitConfig(
        network=network,
        catalog=catalog,
        resolution=resolution,
        migration=migration,
        activation=activation,
        locks=locks,
        mirrors={k: v.rstrip("/") for k, v in mirrors.items()},
    )


def load_config(config_file: Optional[Path]) -> RuntimeKitConfig:
    """
    Load configuration from a YAML file and apply environment overrides.

    Args:
        config_file: Path to config.yaml (missing file means defaults)

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    data: Optional[Dict[str, Any]] = None

    if config_file is not None and config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {config_file}: {e}") from e
        logger.debug(f"Loaded configuration from {config_file}")

    config = parse_config(data)

    ceiling = os.environ.get(CEILING_ENV_VAR)
    if ceiling:
        config.resolution.ceiling = Path(ceiling).expanduser()

    return config


__all__ = [
    "CEILING_ENV_VAR",
    "RESOLUTION_SOURCES",
    "NetworkConfig",
    "CatalogConfig",
    "ResolutionConfig",
    "MigrationConfig",
    "ActivationConfig",
    "LockConfig",
    "RuntimeKitConfig",
    "parse_config",
    "load_config",
]
