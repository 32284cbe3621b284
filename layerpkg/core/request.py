"""Package change requests sent to the daemon."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .packages import PackageRef


@dataclass(frozen=True)
class ChangeOptions:
    """Options for a package change transaction."""
    reboot: bool = False    # Daemon reboots once the deployment is staged
    dry_run: bool = False   # Print the transaction, change nothing

    def to_wire(self) -> Dict[str, bool]:
        return {
            'reboot': self.reboot,
            'dry-run': self.dry_run,
        }


@dataclass(frozen=True)
class ChangeRequest:
    """A full package change: packages to add, packages to remove, options.

    Order of both package lists is the order given by the user.
    """
    packages_to_add: Tuple[PackageRef, ...] = ()
    packages_to_remove: Tuple[str, ...] = ()
    options: ChangeOptions = field(default_factory=ChangeOptions)

    def to_wire(self) -> Tuple[Dict[str, bool], List[str], List[str]]:
        """Return (options, packages_added, packages_removed) for PkgChange."""
        return (
            self.options.to_wire(),
            [ref.wire_value() for ref in self.packages_to_add],
            list(self.packages_to_remove),
        )


def build_change_request(
    packages_to_add: Optional[Iterable[PackageRef]] = None,
    packages_to_remove: Optional[Iterable[str]] = None,
    options: Optional[ChangeOptions] = None,
) -> ChangeRequest:
    """Assemble a ChangeRequest.

    Args:
        packages_to_add: Resolved package references, or None
        packages_to_remove: Installed package names, or None
        options: Transaction options (default: no reboot, no dry-run)

    Raises:
        ValueError: both package lists are empty
    """
    to_add = tuple(packages_to_add or ())
    to_remove = tuple(packages_to_remove or ())

    if not to_add and not to_remove:
        raise ValueError("change request needs at least one package to add or remove")

    return ChangeRequest(
        packages_to_add=to_add,
        packages_to_remove=to_remove,
        options=options or ChangeOptions(),
    )
