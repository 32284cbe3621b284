"""
Package reference resolution.

Classifies each package token given to 'add' as either a repository
package spec (passed to the daemon verbatim) or a local archive file.

    vim-enhanced              -> RepositoryRef('vim-enhanced')
    /srv/rpms/foo-1.0.rpm     -> LocalFileRef('/srv/rpms/foo-1.0.rpm')
    ./build/foo-1.0.rpm       -> LocalFileRef('/home/me/build/foo-1.0.rpm')

Only relative archive paths are touched: the daemon runs with another
working directory, so they must be checked and made absolute here.
"""

import errno
import logging
import os
from dataclasses import dataclass
from typing import List, Union

from .config import LOCAL_ARCHIVE_SUFFIX

logger = logging.getLogger(__name__)


class PackageResolutionError(Exception):
    """A package token could not be turned into a package reference."""

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"{reason}: '{token}'")


class EmptyPackageToken(PackageResolutionError, ValueError):
    """Package token is an empty string."""

    def __init__(self, token: str = ""):
        super().__init__(token, "empty package name")

    def __str__(self):
        return "empty package name"


class UnreadablePackageFile(PackageResolutionError):
    """Local package archive does not exist or is not readable."""

    def __init__(self, token: str, detail: str = ""):
        self.detail = detail
        super().__init__(token, "can't read package")

    def __str__(self):
        if self.detail:
            return f"can't read package '{self.token}': {self.detail}"
        return f"can't read package '{self.token}'"


class PathResolutionError(PackageResolutionError):
    """Local package archive path could not be canonicalized."""

    def __init__(self, token: str, detail: str = ""):
        self.detail = detail
        super().__init__(token, "cannot resolve path")

    def __str__(self):
        if self.detail:
            return f"cannot resolve path of '{self.token}': {self.detail}"
        return f"cannot resolve path of '{self.token}'"


@dataclass(frozen=True)
class RepositoryRef:
    """Package name or spec resolved by the daemon from its repos."""
    spec: str

    def wire_value(self) -> str:
        return self.spec


@dataclass(frozen=True)
class LocalFileRef:
    """Local package archive, as an absolute path."""
    path: str

    def wire_value(self) -> str:
        return self.path


PackageRef = Union[RepositoryRef, LocalFileRef]


def is_local_archive(token: str) -> bool:
    """Check if a token names a package archive file."""
    return token.endswith(LOCAL_ARCHIVE_SUFFIX)


def resolve_package_token(token: str) -> PackageRef:
    """Resolve a single 'add' token.

    Args:
        token: Package name, spec, or archive path

    Returns:
        RepositoryRef or LocalFileRef

    Raises:
        EmptyPackageToken: token is an empty string
        UnreadablePackageFile: relative archive missing or unreadable
        PathResolutionError: relative archive path cannot be canonicalized
    """
    if not token:
        raise EmptyPackageToken(token)

    if not is_local_archive(token):
        logger.debug(f"{token}: repository package")
        return RepositoryRef(token)

    if token.startswith('/'):
        logger.debug(f"{token}: absolute local archive")
        return LocalFileRef(token)

    if not os.access(token, os.R_OK):
        # os.access() doesn't say why; stat gives the errno text
        try:
            os.stat(token)
            detail = os.strerror(errno.EACCES)
        except OSError as e:
            detail = e.strerror or str(e)
        raise UnreadablePackageFile(token, detail)

    try:
        abspath = os.path.realpath(token, strict=True)
    except OSError as e:
        raise PathResolutionError(token, e.strerror or str(e)) from e

    logger.debug(f"{token}: relative local archive -> {abspath}")
    return LocalFileRef(abspath)


def resolve_package_tokens(tokens: List[str]) -> List[PackageRef]:
    """Resolve 'add' tokens, keeping their order.

    Fails on the first token that cannot be resolved.
    """
    return [resolve_package_token(token) for token in tokens]


def check_package_names(names: List[str]) -> List[str]:
    """Validate 'remove' names; they are otherwise passed through verbatim.

    Raises:
        EmptyPackageToken: a name is an empty string
    """
    for name in names:
        if not name:
            raise EmptyPackageToken(name)
    return list(names)
