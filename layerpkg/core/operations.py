"""
Core operations layer for layerpkg package changes.

Transport-agnostic: takes any TransactionClient. The CLI handles all
user interaction (progress, diff, messages); this module turns user
input into a request and drives it to a terminal outcome.
"""

import logging
from typing import List, Optional

from .packages import check_package_names, resolve_package_tokens
from .request import ChangeOptions, ChangeRequest, build_change_request
from .transaction import TransactionClient, TransactionOutcome

logger = logging.getLogger(__name__)


class PackageChangeOperations:
    """Add or remove layered packages through the package daemon."""

    def __init__(self, client: TransactionClient):
        """Initialize operations.

        Args:
            client: Open transaction client, owned by the caller
        """
        self.client = client

    def execute(self, request: ChangeRequest,
                osname: Optional[str] = None) -> TransactionOutcome:
        """Submit a request and wait for its outcome.

        Raises:
            TransactionError subclasses from the client
        """
        options, added, removed = request.to_wire()
        logger.info(
            f"Submitting package change: add={added} remove={removed} "
            f"options={options} os={osname or '(booted)'}"
        )
        handle = self.client.submit(request, osname)
        logger.debug(f"Transaction address: {handle.address}")

        outcome = self.client.await_completion(handle)
        logger.info(f"Transaction outcome: {outcome}")
        return outcome

    def add_packages(self, tokens: List[str], options: ChangeOptions,
                     osname: Optional[str] = None) -> TransactionOutcome:
        """Resolve package tokens and layer them.

        Resolution completes before anything is sent to the daemon.

        Raises:
            PackageResolutionError: a token could not be resolved
            TransactionError subclasses from the client
        """
        refs = resolve_package_tokens(tokens)
        request = build_change_request(packages_to_add=refs, options=options)
        return self.execute(request, osname)

    def remove_packages(self, names: List[str], options: ChangeOptions,
                        osname: Optional[str] = None) -> TransactionOutcome:
        """Remove layered packages by name.

        Raises:
            EmptyPackageToken: a name is empty
            TransactionError subclasses from the client
        """
        names = check_package_names(names)
        request = build_change_request(packages_to_remove=names, options=options)
        return self.execute(request, osname)
