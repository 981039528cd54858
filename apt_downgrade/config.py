"""Configuration file loader for apt-downgrade.

Handles discovery, loading, parsing, and validation of configuration files.
Settings live under an ``[apt-downgrade]`` table in a TOML file.

Discovery order:

1. Explicit path from ``--config`` or ``APT_DOWNGRADE_CONFIG``
2. ``apt-downgrade.toml`` in current directory
3. ``/etc/apt-downgrade.toml``

Configuration precedence: defaults < config file < CLI args.

Typical usage::

    config = load_config()  # Auto-discover
    config = load_config(Path("custom.toml"))  # Explicit path

Example (``apt-downgrade.toml``)::

    [apt-downgrade]
    check_reverse_dependencies = true
    concurrent_limit = 4
    timeout = 120
"""

from __future__ import annotations


import tomli as tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field

from apt_downgrade.exceptions import ConfigError
from apt_downgrade.utils.logger import get_logger
from apt_downgrade.constants import (
    CONFIG_SECTION,
    DEFAULT_CHECK_REVERSE_DEPENDENCIES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_MAX_STEPS,
    DEFAULT_PREFETCH,
    LOCAL_CONFIG_FILE,
    SYSTEM_CONFIG_FILE,
)

logger = get_logger("config")


@dataclass
class AptDowngradeConfig:
    """Parsed and validated apt-downgrade configuration.

    All fields have defaults, so empty config files are valid.

    Attributes:
        check_reverse_dependencies: Schedule installed packages that depend
            on a changed package so they are moved along when needed.
        prefetch: Warm the metadata cache for the dependencies of each newly
            chosen version concurrently.
        concurrent_limit: Maximum number of metadata queries in flight.
        max_steps: Resolver iteration budget.
        timeout: Resolver wall-clock budget in seconds, or ``None``.
        cache_dir: Override for the APT archive cache directory.
        architecture: Override for the native architecture.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    check_reverse_dependencies: bool = DEFAULT_CHECK_REVERSE_DEPENDENCIES
    prefetch: bool = DEFAULT_PREFETCH
    concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT
    max_steps: int = DEFAULT_MAX_STEPS
    timeout: Optional[float] = None
    cache_dir: Optional[str] = None
    architecture: Optional[str] = None

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging.

        Excludes ``source_path`` metadata.
        """
        return {
            "check_reverse_dependencies": self.check_reverse_dependencies,
            "prefetch": self.prefetch,
            "concurrent_limit": self.concurrent_limit,
            "max_steps": self.max_steps,
            "timeout": self.timeout,
            "cache_dir": self.cache_dir,
            "architecture": self.architecture,
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Search order:

    1. ``explicit_path`` (from ``--config`` or ``APT_DOWNGRADE_CONFIG``)
    2. ``apt-downgrade.toml`` in current directory
    3. ``/etc/apt-downgrade.toml``

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    # 1. Explicit path takes priority
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    # 2. apt-downgrade.toml in current directory
    local_toml = Path.cwd() / LOCAL_CONFIG_FILE
    if local_toml.is_file():
        logger.debug("Found %s: %s", LOCAL_CONFIG_FILE, local_toml)
        return local_toml

    # 3. System-wide file
    system_toml = Path(SYSTEM_CONFIG_FILE)
    if system_toml.is_file():
        logger.debug("Found system config: %s", system_toml)
        return system_toml

    logger.debug("No configuration file found")
    return None


def load_config(config_path: Optional[Path] = None) -> AptDowngradeConfig:
    """Load and validate apt-downgrade configuration.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`AptDowngradeConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return AptDowngradeConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    section = raw.get(CONFIG_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(
            f"[{CONFIG_SECTION}] must be a table",
            config_path=str(resolved),
        )
    if not section:
        logger.debug("Config file found but no [%s] section, using defaults", CONFIG_SECTION)
        return AptDowngradeConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


# option name -> (accepted types, human-readable type, must be positive)
_OPTIONS: Dict[str, Tuple[Tuple[type, ...], str, bool]] = {
    "check_reverse_dependencies": ((bool,), "a boolean", False),
    "prefetch": ((bool,), "a boolean", False),
    "concurrent_limit": ((int,), "an integer", True),
    "max_steps": ((int,), "an integer", True),
    "timeout": ((int, float), "a number", True),
    "cache_dir": ((str,), "a string", False),
    "architecture": ((str,), "a string", False),
}


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> AptDowngradeConfig:
    """Parse and validate the ``[apt-downgrade]`` table.

    Rejects unknown keys, type mismatches (including booleans where numbers
    are expected) and non-positive limits.

    Raises:
        ConfigError: Unknown keys or invalid values.
    """
    config = AptDowngradeConfig()

    unknown = set(section.keys()) - set(_OPTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    for option, (types, label, positive) in _OPTIONS.items():
        if option not in section:
            continue
        val = section[option]
        # bool is an int subclass
        if not isinstance(val, types) or (isinstance(val, bool) and bool not in types):
            raise ConfigError(
                f"{option} must be {label}, got {type(val).__name__}",
                config_path=config_path,
                option=option,
            )
        if positive and val <= 0:
            raise ConfigError(
                f"{option} must be greater than zero, got {val}",
                config_path=config_path,
                option=option,
            )
        if option == "timeout":
            val = float(val)
        setattr(config, option, val)

    return config
