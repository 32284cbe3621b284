"""
Deployment inspection: what changes at the next boot.

After a successful package change the daemon has written a new
deployment next to the booted one. The package diff between the two
is computed here from each deployment's rpmdb.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .rpmdb import (
    DEPLOYMENT_RPMDB,
    RpmdbError,
    compare_evr,
    evr_key,
    package_key,
    read_installed_packages,
)

logger = logging.getLogger(__name__)

PackageMap = Dict[str, Dict[str, Any]]


class DeploymentInspectionError(Exception):
    """The sysroot or a deployment's package set could not be read."""
    pass


@dataclass
class PackageDiff:
    """Package-level difference between two deployments."""
    upgraded: List[Tuple[Dict, Dict]] = field(default_factory=list)    # (old, new)
    downgraded: List[Tuple[Dict, Dict]] = field(default_factory=list)  # (old, new)
    removed: List[Dict] = field(default_factory=list)
    added: List[Dict] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.upgraded or self.downgraded or self.removed or self.added)


def _group_by_arch(packages: PackageMap) -> Dict[str, List[Dict]]:
    groups = defaultdict(list)
    for pkg in packages.values():
        groups[package_key(pkg)].append(pkg)
    for group in groups.values():
        group.sort(key=evr_key)
    return groups


def compute_package_diff(old: PackageMap, new: PackageMap) -> PackageDiff:
    """Compare two package sets.

    Packages are matched by name and arch, whatever their map keys.
    A name.arch present once on each side is an upgrade, a downgrade or
    unchanged; one installed in several versions (kernels) is compared
    by NEVRA, so versions only appear as added or removed.

    Args:
        old: Packages of the booted deployment (key -> package dict)
        new: Packages of the pending deployment

    Returns:
        PackageDiff, every list sorted by name.arch
    """
    diff = PackageDiff()
    old_groups = _group_by_arch(old)
    new_groups = _group_by_arch(new)

    for key in sorted(set(old_groups) | set(new_groups)):
        before = old_groups.get(key, [])
        after = new_groups.get(key, [])

        if len(before) == 1 and len(after) == 1:
            order = compare_evr(before[0], after[0])
            if order < 0:
                diff.upgraded.append((before[0], after[0]))
            elif order > 0:
                diff.downgraded.append((before[0], after[0]))
            continue

        old_nevras = {pkg['nevra'] for pkg in before}
        new_nevras = {pkg['nevra'] for pkg in after}
        diff.removed.extend(pkg for pkg in before if pkg['nevra'] not in new_nevras)
        diff.added.extend(pkg for pkg in after if pkg['nevra'] not in old_nevras)

    return diff


class SystemStateInspector(ABC):
    """Compute the package diff of a system's pending deployment."""

    @abstractmethod
    def package_diff(self, sysroot_path: str) -> PackageDiff:
        """Diff between the booted and the pending deployment."""


class OstreeStateInspector(SystemStateInspector):
    """Inspect an OSTree sysroot via libostree (gi) and the rpm bindings."""

    def _load_sysroot(self, sysroot_path: str):
        try:
            import gi
            gi.require_version('OSTree', '1.0')
            gi.require_version('Gio', '2.0')
            from gi.repository import Gio, GLib, OSTree
        except (ImportError, ValueError) as e:
            raise DeploymentInspectionError(
                f"libostree not available: {e}. "
                "Install python3-gobject and ostree-libs."
            )

        sysroot = OSTree.Sysroot.new(Gio.File.new_for_path(sysroot_path))
        try:
            sysroot.load(None)
        except GLib.Error as e:
            raise DeploymentInspectionError(
                f"Cannot load sysroot {sysroot_path}: {e.message}"
            )
        return sysroot

    @staticmethod
    def _same_deployment(a, b) -> bool:
        return (a.get_osname() == b.get_osname()
                and a.get_csum() == b.get_csum()
                and a.get_deployserial() == b.get_deployserial())

    def _find_pending(self, sysroot, booted) -> Optional[Any]:
        """First deployment of the booted OS, if it isn't the booted one."""
        for deployment in sysroot.get_deployments():
            if deployment.get_osname() != booted.get_osname():
                continue
            if self._same_deployment(deployment, booted):
                return None
            return deployment
        return None

    def _read_packages(self, sysroot, deployment) -> PackageMap:
        deploy_dir = Path(sysroot.get_deployment_directory(deployment).get_path())
        try:
            return read_installed_packages(deploy_dir / DEPLOYMENT_RPMDB)
        except RpmdbError as e:
            raise DeploymentInspectionError(str(e))

    def package_diff(self, sysroot_path: str) -> PackageDiff:
        """Diff the booted deployment against the pending one.

        Returns an empty diff when nothing is pending.

        Raises:
            DeploymentInspectionError: sysroot or rpmdb unreadable
        """
        sysroot = self._load_sysroot(sysroot_path)

        booted = sysroot.get_booted_deployment()
        if booted is None:
            raise DeploymentInspectionError(
                f"Not booted into a deployment of {sysroot_path}"
            )

        pending = self._find_pending(sysroot, booted)
        if pending is None:
            logger.debug("No pending deployment")
            return PackageDiff()

        logger.debug(
            f"Diffing booted {booted.get_csum()}.{booted.get_deployserial()} "
            f"against pending {pending.get_csum()}.{pending.get_deployserial()}"
        )
        return compute_package_diff(
            self._read_packages(sysroot, booted),
            self._read_packages(sysroot, pending),
        )
