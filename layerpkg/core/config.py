"""
Central configuration for layerpkg.

Resolution order (later wins):
    1. Built-in defaults (system bus, rpm-ostree daemon names, sysroot /)
    2. Config file: /etc/layerpkg.conf, or the path in $LAYERPKG_CONFIG
    3. Environment: LAYERPKG_BUS, LAYERPKG_BUS_NAME, LAYERPKG_SYSROOT

Config file format (optional, one setting per line):
    bus=session
    bus_name=org.projectatomic.rpmostree1
    sysroot=/
    # Comments start with #
"""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Config file
DEFAULT_CONFIG_FILE = Path("/etc/layerpkg.conf")
CONFIG_ENV = "LAYERPKG_CONFIG"

# D-Bus names of the package daemon
BUS_NAME = "org.projectatomic.rpmostree1"
SYSROOT_OBJECT_PATH = "/org/projectatomic/rpmostree1/Sysroot"
SYSROOT_INTERFACE = "org.projectatomic.rpmostree1.Sysroot"
OS_INTERFACE = "org.projectatomic.rpmostree1.OS"
TRANSACTION_INTERFACE = "org.projectatomic.rpmostree1.Transaction"
TRANSACTION_OBJECT_PATH = "/"

# Which bus the daemon lives on
BUS_SYSTEM = "system"
BUS_SESSION = "session"
VALID_BUSES = (BUS_SYSTEM, BUS_SESSION)

DEFAULT_SYSROOT = "/"

# Suffix marking a token as a local package archive rather than a repo name
LOCAL_ARCHIVE_SUFFIX = ".rpm"

# Keys accepted in the config file, mapped to their environment variable
_KEYS = {
    'bus': "LAYERPKG_BUS",
    'bus_name': "LAYERPKG_BUS_NAME",
    'sysroot': "LAYERPKG_SYSROOT",
}

# Cache for the merged configuration
_cached_config: Optional[dict] = None


class ConfigError(Exception):
    """Invalid configuration value."""
    pass


def _defaults() -> dict:
    return {
        'bus': BUS_SYSTEM,
        'bus_name': BUS_NAME,
        'sysroot': DEFAULT_SYSROOT,
    }


def read_config_file(path: Path) -> Optional[dict]:
    """Read a key=value config file.

    Returns:
        Dict with config values, or None if the file doesn't exist
    """
    if not path.exists():
        return None

    config = {}
    try:
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    key = key.strip()
                    if key not in _KEYS:
                        logger.warning(f"Ignoring unknown key '{key}' in {path}")
                        continue
                    config[key] = value.strip()
    except (OSError, IOError) as e:
        logger.debug(f"Cannot read config file {path}: {e}")
        return None

    return config


def _config_file_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


def get_config() -> dict:
    """Return the merged configuration.

    Returns:
        Dict with 'bus', 'bus_name', 'sysroot'
    """
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    config = _defaults()

    file_config = read_config_file(_config_file_path())
    if file_config:
        config.update(file_config)

    for key, env_name in _KEYS.items():
        value = os.environ.get(env_name)
        if value:
            config[key] = value

    if config['bus'] not in VALID_BUSES:
        raise ConfigError(
            f"Invalid bus '{config['bus']}' (expected one of: {', '.join(VALID_BUSES)})"
        )

    _cached_config = config
    return _cached_config


def reset_config():
    """Drop the cached configuration so the next call re-reads it."""
    global _cached_config
    _cached_config = None


def get_bus_type() -> str:
    """Get the bus the daemon is reached on ('system' or 'session')."""
    return get_config()['bus']


def get_bus_name() -> str:
    """Get the well-known bus name of the package daemon."""
    return get_config()['bus_name']


def get_sysroot() -> str:
    """Get the default sysroot path."""
    return get_config()['sysroot']
