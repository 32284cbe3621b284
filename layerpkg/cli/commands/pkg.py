"""Layered package add/remove commands."""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ...core.deployments import SystemStateInspector
    from ...core.transaction import TransactionClient

from ...core.deployments import DeploymentInspectionError
from ...core.packages import (
    PackageResolutionError,
    check_package_names,
    resolve_package_tokens,
)
from ...core.request import ChangeOptions, ChangeRequest, build_change_request
from ...core.transaction import (
    ClientCancelled,
    ConnectionLost,
    TransactionError,
)

logger = logging.getLogger(__name__)

# Exit code for an interrupted wait (128 + SIGINT)
EXIT_CANCELLED = 130


def _print_error(message: str):
    from .. import colors
    print(colors.error(f"error: {message}"), file=sys.stderr)


def _options_from_args(args) -> ChangeOptions:
    return ChangeOptions(
        reboot=getattr(args, 'reboot', False),
        dry_run=getattr(args, 'dry_run', False),
    )


def _run_request(args, request: ChangeRequest,
                 client: 'TransactionClient' = None,
                 inspector: 'SystemStateInspector' = None) -> int:
    """Submit a request, wait for it, and report the result."""
    from ...core.operations import PackageChangeOperations
    from ..display import TransactionProgressDisplay
    from ..report import report_outcome

    progress = None
    if not getattr(args, 'quiet', False):
        progress = TransactionProgressDisplay()

    if client is None:
        from ...dbus.client import DBusTransactionClient
        client = DBusTransactionClient(progress_callback=progress)
    if inspector is None:
        from ...core.deployments import OstreeStateInspector
        inspector = OstreeStateInspector()

    osname = getattr(args, 'os', None)

    try:
        with client:
            ops = PackageChangeOperations(client)
            try:
                outcome = ops.execute(request, osname)
            finally:
                if progress:
                    progress.finish()
            return report_outcome(
                outcome, request.options, client.sysroot_path, inspector
            )
    except ClientCancelled as e:
        _print_error(f"{e} (the transaction keeps running in the daemon)")
        return EXIT_CANCELLED
    except ConnectionLost as e:
        _print_error(f"{e}; the transaction may still complete")
        return 1
    except TransactionError as e:
        _print_error(str(e))
        return 1
    except DeploymentInspectionError as e:
        _print_error(f"cannot compute package diff: {e}")
        return 1


def cmd_pkg_add(args, client: 'TransactionClient' = None,
                inspector: 'SystemStateInspector' = None) -> int:
    """Handle add command: layer packages onto the deployment."""
    try:
        refs = resolve_package_tokens(args.packages)
    except PackageResolutionError as e:
        _print_error(str(e))
        return 1

    request = build_change_request(
        packages_to_add=refs, options=_options_from_args(args)
    )
    return _run_request(args, request, client, inspector)


def cmd_pkg_remove(args, client: 'TransactionClient' = None,
                   inspector: 'SystemStateInspector' = None) -> int:
    """Handle remove command: drop layered packages by name."""
    try:
        names = check_package_names(args.packages)
    except PackageResolutionError as e:
        _print_error(str(e))
        return 1

    request = build_change_request(
        packages_to_remove=names, options=_options_from_args(args)
    )
    return _run_request(args, request, client, inspector)
