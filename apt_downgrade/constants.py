"""
Centralized constants for apt-downgrade.

This module defines immutable configuration values used across
apt-downgrade, including resolver defaults, APT command lines, configuration
file locations, and logging formats. All values are intended to be treated
as read-only.
"""

from typing import Final, Sequence

# ---------------------------------------------------------------------------
# Configuration discovery
# ---------------------------------------------------------------------------

#: Table name holding apt-downgrade settings in a TOML file.
CONFIG_SECTION: Final[str] = "apt-downgrade"

#: Configuration file searched in the current directory.
LOCAL_CONFIG_FILE: Final[str] = "apt-downgrade.toml"

#: System-wide configuration file.
SYSTEM_CONFIG_FILE: Final[str] = "/etc/apt-downgrade.toml"

# ---------------------------------------------------------------------------
# Resolver defaults
# ---------------------------------------------------------------------------

#: Check installed reverse dependencies of every changed package.
DEFAULT_CHECK_REVERSE_DEPENDENCIES: Final[bool] = True

#: Warm the metadata cache for dependencies of newly chosen versions.
DEFAULT_PREFETCH: Final[bool] = True

#: Maximum number of metadata queries in flight at once.
DEFAULT_CONCURRENT_LIMIT: Final[int] = 8

#: Worklist iterations after which the search is abandoned.
DEFAULT_MAX_STEPS: Final[int] = 100_000

# ---------------------------------------------------------------------------
# APT integration
# ---------------------------------------------------------------------------

#: Fallback archive cache directory when ``apt-config`` is unavailable.
DEFAULT_APT_CACHE_DIR: Final[str] = "/var/cache/apt/archives"

#: Query for the archive cache location and native architecture.
APT_CONFIG_COMMAND: Final[Sequence[str]] = (
    "apt-config",
    "shell",
    "CACHE_ROOT_DIR",
    "Dir::Cache",
    "CACHE_ARCHIVE_SUBDIR",
    "Dir::Cache::archives",
    "ARCH",
    "APT::Architecture",
)

#: Prefix of the installed-version line in ``apt-cache policy`` output.
POLICY_INSTALLED_PREFIX: Final[str] = "Installed:"

#: Value ``apt-cache policy`` prints for packages that are not installed.
POLICY_NOT_INSTALLED: Final[str] = "(none)"

#: Base command used to apply a plan.
APT_INSTALL_COMMAND: Final[Sequence[str]] = (
    "apt-get",
    "install",
    "-V",
    "--no-install-recommends",
    "--allow-downgrades",
)

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
