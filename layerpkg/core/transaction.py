"""
Transaction client interface for the package daemon.

A package change is one daemon transaction:

    client                         daemon
      |-- submit(request) -------->|  validates, creates transaction
      |<-- TransactionHandle ------|  (address of a private endpoint)
      |                            |
      |-- await_completion ------->|  Start()
      |<-- progress signals -------|
      |<-- Finished(success, msg) -|
      |                            |

The transport (D-Bus today) lives behind TransactionClient so the rest
of layerpkg only deals with handles and outcomes. Nothing here retries:
a package change must run at most once.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .request import ChangeRequest

logger = logging.getLogger(__name__)


# =========================================================================
# Errors
# =========================================================================

class TransactionError(Exception):
    """Base class for errors talking to the package daemon."""
    pass


class ServiceUnreachable(TransactionError):
    """The daemon (or the bus) could not be reached."""
    pass


class ServiceRejected(TransactionError):
    """The daemon refused the request."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConnectionLost(TransactionError):
    """Connection closed before the transaction reported completion.

    The transaction may still have completed on the daemon side.
    """
    pass


class ClientCancelled(TransactionError):
    """The wait for completion was cancelled on the client side.

    The submitted transaction keeps running in the daemon.
    """
    pass


class TransactionFailed(TransactionError):
    """The daemon reported the transaction as failed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# =========================================================================
# Handles and outcomes
# =========================================================================

@dataclass(frozen=True)
class TransactionHandle:
    """An in-flight transaction, as returned by the daemon."""
    address: str
    os_path: str = ""


@dataclass(frozen=True)
class Succeeded:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str


@dataclass(frozen=True)
class AlreadyCompleted:
    """Transaction started by another client, finished successfully."""
    pass


TransactionOutcome = Union[Succeeded, Failed, AlreadyCompleted]


# =========================================================================
# Completion tracking
# =========================================================================

class CompletionTracker:
    """Record the terminal event of one transaction.

    The transport feeds events in as they arrive; the first terminal one
    wins and anything after it is ignored (e.g. the peer closing the
    connection right after Finished).
    """

    FINISHED = "finished"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    def __init__(self, on_terminal: Optional[Callable[[], None]] = None):
        self._on_terminal = on_terminal
        self._state = None
        self._success = False
        self._message = ""
        self.just_started = True

    @property
    def done(self) -> bool:
        return self._state is not None

    def _terminate(self, state: str):
        self._state = state
        logger.debug(f"Transaction reached terminal state: {state}")
        if self._on_terminal:
            self._on_terminal()

    def started(self, just_started: bool):
        """Record the reply to Start(); False means we re-attached."""
        self.just_started = just_started

    def finished(self, success: bool, message: str = ""):
        if self.done:
            return
        self._success = success
        self._message = message
        self._terminate(self.FINISHED)

    def connection_closed(self):
        if self.done:
            return
        self._terminate(self.CLOSED)

    def cancelled(self):
        if self.done:
            return
        self._terminate(self.CANCELLED)

    def outcome(self) -> TransactionOutcome:
        """Convert the terminal event into an outcome.

        Raises:
            ConnectionLost: connection closed first
            ClientCancelled: wait cancelled first
            RuntimeError: no terminal event recorded yet
        """
        if self._state == self.FINISHED:
            if not self._success:
                return Failed(self._message or "transaction failed")
            if not self.just_started:
                return AlreadyCompleted()
            return Succeeded()
        if self._state == self.CLOSED:
            raise ConnectionLost("connection to the transaction closed before it finished")
        if self._state == self.CANCELLED:
            raise ClientCancelled("cancelled while waiting for the transaction")
        raise RuntimeError("transaction has not reached a terminal state")


# =========================================================================
# Client interface
# =========================================================================

ProgressCallback = Callable[[str, str, int], None]


class TransactionClient(ABC):
    """Submit package changes and wait for them to complete.

    Used as a context manager; the connection is released on exit.

    Usage:
        with DBusTransactionClient() as client:
            handle = client.submit(request)
            outcome = client.await_completion(handle)
    """

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def open(self):
        """Acquire the connection to the daemon."""
        pass

    @abstractmethod
    def close(self):
        """Release every connection held by this client."""

    @abstractmethod
    def submit(self, request: ChangeRequest,
               osname: Optional[str] = None) -> TransactionHandle:
        """Send a change request to the daemon.

        Args:
            request: The change to apply
            osname: Target OS, None for the booted one

        Raises:
            ServiceUnreachable, ServiceRejected
        """

    @abstractmethod
    def await_completion(self, handle: TransactionHandle) -> TransactionOutcome:
        """Block until the transaction reaches a terminal state.

        Raises:
            ConnectionLost, ClientCancelled
        """

    @abstractmethod
    def cancel(self):
        """Stop waiting for completion (the transaction is not retracted)."""

    @property
    @abstractmethod
    def sysroot_path(self) -> str:
        """Path of the system root the daemon manages."""
