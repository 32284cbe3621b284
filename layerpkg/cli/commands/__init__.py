"""CLI command modules."""

from .pkg import (
    cmd_pkg_add,
    cmd_pkg_remove,
)

__all__ = [
    'cmd_pkg_add',
    'cmd_pkg_remove',
]
