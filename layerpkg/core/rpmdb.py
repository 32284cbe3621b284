"""
RPM database utilities for layerpkg.

Reads the package set of a deployment's rpmdb and provides the
version ordering used to classify package changes.
"""

import logging
import re
import string
from collections import defaultdict
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# Location of the rpmdb inside an ostree deployment
DEPLOYMENT_RPMDB = Path("usr/share/rpm")


class RpmdbError(Exception):
    """The rpmdb could not be read."""
    pass


def make_nevra(name: str, epoch: int, version: str, release: str, arch: str) -> str:
    """Build a NEVRA string, omitting a zero epoch."""
    if epoch:
        return f"{name}-{epoch}:{version}-{release}.{arch}"
    return f"{name}-{version}-{release}.{arch}"


def package_key(pkg: Dict) -> str:
    """Key of a package in a package map: 'name.arch'."""
    return f"{pkg['name']}.{pkg['arch']}"


def key_packages(pkgs: List[Dict]) -> Dict[str, Dict]:
    """Build a package map keyed independently of rpmdb order.

    Every package is keyed by 'name.arch', so multilib variants never
    collide. Packages installed in several versions for the same arch
    (installonly packages such as kernels) are keyed by NEVRA instead.
    """
    groups = defaultdict(list)
    for pkg in pkgs:
        groups[package_key(pkg)].append(pkg)

    packages = {}
    for key, group in groups.items():
        if len(group) == 1:
            packages[key] = group[0]
        else:
            for pkg in group:
                packages[pkg['nevra']] = pkg
    return packages


def read_installed_packages(dbpath: Path) -> Dict[str, Dict[str, Any]]:
    """Read all packages from an rpmdb directory.

    Args:
        dbpath: Directory holding the rpmdb (e.g. <deployment>/usr/share/rpm)

    Returns:
        Package map (see key_packages) of package dicts with keys:
        name, epoch, version, release, arch, nevra

    Raises:
        RpmdbError: rpm bindings missing or database unreadable
    """
    try:
        import rpm
    except ImportError as e:
        raise RpmdbError(f"rpm Python bindings not available: {e}")

    if not dbpath.is_dir():
        raise RpmdbError(f"No rpmdb at {dbpath}")

    pkgs = []
    ts = None
    rpm.addMacro('_dbpath', str(dbpath))
    try:
        ts = rpm.TransactionSet()
        ts.setVSFlags(rpm._RPMVSF_NOSIGNATURES | rpm._RPMVSF_NODIGESTS)
        for hdr in ts.dbMatch():
            name = hdr[rpm.RPMTAG_NAME]
            if name == 'gpg-pubkey':
                continue
            epoch = hdr[rpm.RPMTAG_EPOCH] or 0
            version = hdr[rpm.RPMTAG_VERSION]
            release = hdr[rpm.RPMTAG_RELEASE]
            arch = hdr[rpm.RPMTAG_ARCH] or 'noarch'
            pkgs.append({
                'name': name,
                'epoch': epoch,
                'version': version,
                'release': release,
                'arch': arch,
                'nevra': make_nevra(name, epoch, version, release, arch),
            })
    except rpm.error as e:
        raise RpmdbError(f"Cannot read rpmdb at {dbpath}: {e}")
    finally:
        if ts is not None:
            ts.closeDB()
        rpm.delMacro('_dbpath')

    logger.debug(f"Read {len(pkgs)} packages from {dbpath}")
    return key_packages(pkgs)


_DIGITS = re.compile(r"[0-9]*")
_ALPHA = re.compile(r"[a-zA-Z]*")
_ALNUM = frozenset(string.ascii_letters + string.digits)


def rpmvercmp(a: str, b: str) -> int:
    """Compare two version (or release) strings the way rpm does.

    Segments are runs of digits or letters; everything else separates
    them. Numeric segments compare as integers and beat alphabetic ones,
    '~' sorts before anything (even the end of the string) and '^'
    sorts after the end of the string but before any other segment.

    Returns:
        -1, 0 or 1
    """
    if a == b:
        return 0

    i = j = 0
    while i < len(a) or j < len(b):
        while i < len(a) and a[i] not in _ALNUM and a[i] not in '~^':
            i += 1
        while j < len(b) and b[j] not in _ALNUM and b[j] not in '~^':
            j += 1

        ca = a[i] if i < len(a) else ''
        cb = b[j] if j < len(b) else ''

        if ca == '~' or cb == '~':
            if ca != '~':
                return 1
            if cb != '~':
                return -1
            i += 1
            j += 1
            continue

        if ca == '^' or cb == '^':
            if not ca:
                return -1
            if not cb:
                return 1
            if ca != '^':
                return 1
            if cb != '^':
                return -1
            i += 1
            j += 1
            continue

        if not (ca and cb):
            break

        if ca in string.digits:
            seg_a = _DIGITS.match(a, i).group()
            seg_b = _DIGITS.match(b, j).group()
            isnum = True
        else:
            seg_a = _ALPHA.match(a, i).group()
            seg_b = _ALPHA.match(b, j).group()
            isnum = False
        i += len(seg_a)
        j += len(seg_b)

        # Different segment types: numeric wins
        if not seg_b:
            return 1 if isnum else -1

        if isnum:
            seg_a = seg_a.lstrip('0')
            seg_b = seg_b.lstrip('0')
            if len(seg_a) != len(seg_b):
                return 1 if len(seg_a) > len(seg_b) else -1

        if seg_a != seg_b:
            return 1 if seg_a > seg_b else -1

    if i >= len(a) and j >= len(b):
        return 0
    return 1 if i < len(a) else -1


def compare_evr(old: Dict, new: Dict) -> int:
    """Compare the epoch, version and release of two package dicts.

    Returns:
        -1 if old < new, 0 if equal, 1 if old > new
    """
    old_epoch = int(old.get('epoch', 0) or 0)
    new_epoch = int(new.get('epoch', 0) or 0)
    if old_epoch != new_epoch:
        return 1 if old_epoch > new_epoch else -1

    rc = rpmvercmp(old.get('version', '') or '', new.get('version', '') or '')
    if rc:
        return rc
    return rpmvercmp(old.get('release', '') or '', new.get('release', '') or '')


_EvrKey = cmp_to_key(compare_evr)


def evr_key(pkg: Dict):
    """Return a sortable key for epoch-version-release comparison.

    Example:
        if evr_key(new) > evr_key(old): ...  # upgrade
    """
    return _EvrKey(pkg)


def format_evr(pkg: Dict) -> str:
    """Format a package's [epoch:]version-release."""
    epoch = pkg.get('epoch', 0) or 0
    evr = f"{pkg.get('version', '')}-{pkg.get('release', '')}"
    return f"{epoch}:{evr}" if epoch else evr
