"""Report the outcome of a package change transaction to the user."""

import logging

from . import colors
from .display import print_package_diff
from ..core.deployments import SystemStateInspector
from ..core.request import ChangeOptions
from ..core.transaction import (
    AlreadyCompleted,
    Failed,
    TransactionFailed,
    TransactionOutcome,
)

logger = logging.getLogger(__name__)

DRY_RUN_NOTICE = "Exiting because of '--dry-run' option"
REBOOT_HINT = 'Run "systemctl reboot" to start a reboot'


def report_outcome(outcome: TransactionOutcome, options: ChangeOptions,
                   sysroot_path: str, inspector: SystemStateInspector) -> int:
    """Print what the transaction changed.

    Args:
        outcome: Terminal outcome of the transaction
        options: Options the request was sent with
        sysroot_path: System root managed by the daemon
        inspector: Computes the pending deployment's package diff

    Returns:
        Exit code (0)

    Raises:
        TransactionFailed: outcome is Failed
        DeploymentInspectionError: the diff could not be computed
    """
    if isinstance(outcome, Failed):
        raise TransactionFailed(outcome.reason)

    if options.dry_run:
        print(DRY_RUN_NOTICE)
        return 0

    if isinstance(outcome, AlreadyCompleted):
        print(colors.info("Transaction was started by another client and has completed"))

    if options.reboot:
        # The daemon reboots the system itself
        logger.debug("Reboot requested, skipping diff")
        return 0

    diff = inspector.package_diff(sysroot_path)
    print_package_diff(diff)
    print(REBOOT_HINT)
    return 0
