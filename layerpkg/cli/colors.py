"""Color output support for layerpkg CLI.

Color palette:
  - Red: errors, removed packages
  - Orange: warnings, downgrades
  - Green: success, added packages
  - Blue: progress and upgrades
"""

import os
import sys

# ANSI color codes
_COLORS = {
    'reset': '\033[0m',
    'red': '\033[91m',
    'orange': '\033[93m',   # No true orange in ANSI
    'green': '\033[92m',
    'blue': '\033[94m',
}

# Global state
_colors_enabled = True


def init(nocolor: bool = False, stream=None):
    """Initialize color support.

    Args:
        nocolor: If True, disable colors unconditionally
        stream: Stream whose tty-ness decides (default: stdout)
    """
    global _colors_enabled

    stream = stream or sys.stdout
    if nocolor:
        _colors_enabled = False
    elif os.environ.get('NO_COLOR'):
        # https://no-color.org/
        _colors_enabled = False
    elif not stream.isatty():
        _colors_enabled = False
    else:
        _colors_enabled = True


def _wrap(text: str, color: str) -> str:
    if not _colors_enabled:
        return text
    return f"{_COLORS[color]}{text}{_COLORS['reset']}"


def error(text: str) -> str:
    return _wrap(text, 'red')


def warning(text: str) -> str:
    return _wrap(text, 'orange')


def success(text: str) -> str:
    return _wrap(text, 'green')


def info(text: str) -> str:
    return _wrap(text, 'blue')


# Package change formatting
def pkg_added(name: str) -> str:
    return success(name)


def pkg_removed(name: str) -> str:
    return error(name)


def pkg_upgraded(name: str) -> str:
    return info(name)


def pkg_downgraded(name: str) -> str:
    return warning(name)
