"""Core modules for layerpkg"""

from .packages import LocalFileRef, RepositoryRef, resolve_package_tokens
from .request import ChangeOptions, ChangeRequest, build_change_request

__all__ = [
    'LocalFileRef',
    'RepositoryRef',
    'resolve_package_tokens',
    'ChangeOptions',
    'ChangeRequest',
    'build_change_request',
]
