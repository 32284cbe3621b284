"""D-Bus transport for package daemon transactions.

Talks to the package daemon (rpm-ostree compatible) at:
    Bus name:    org.projectatomic.rpmostree1
    Object path: /org/projectatomic/rpmostree1/Sysroot

A change is submitted with OS.PkgChange(options, added, removed), which
returns the address of a private peer-to-peer endpoint for the new
transaction. The client connects to it, subscribes to the transaction
signals and calls Start(); the daemon then streams progress and ends
with Finished(success, error_message).

Signals on the transaction endpoint:
    Message(s text)
    TaskBegin(s text) / TaskEnd(s text)
    PercentProgress(s text, u percent) / ProgressEnd()
    DownloadProgress(...)
    Finished(b success, s error_message)
"""

import logging
import re
import signal
from typing import Optional

from ..core import config
from ..core.request import ChangeRequest
from ..core.transaction import (
    ClientCancelled,
    CompletionTracker,
    ConnectionLost,
    ProgressCallback,
    ServiceRejected,
    ServiceUnreachable,
    TransactionClient,
    TransactionError,
    TransactionHandle,
    TransactionOutcome,
)

logger = logging.getLogger(__name__)

CLIENT_ID = "layerpkg"

# GError domains as exposed by PyGObject
DBUS_ERROR_DOMAIN = "g-dbus-error-quark"
IO_ERROR_DOMAIN = "g-io-error-quark"

# Gio.DBusError codes meaning the daemon was never reached
UNREACHABLE_CODES = (
    'SERVICE_UNKNOWN',
    'NAME_HAS_NO_OWNER',
    'NO_REPLY',
    'NO_SERVER',
    'DISCONNECTED',
    'TIMEOUT',
    'TIMED_OUT',
    'FILE_NOT_FOUND',
    'SPAWN_FAILED',
    'SPAWN_EXEC_FAILED',
    'SPAWN_CHILD_EXITED',
    'SPAWN_SERVICE_NOT_FOUND',
)

# Remote errors without a registered GError mapping arrive as
# "GDBus.Error:org.example.Error.Name: message"
_REMOTE_ERROR_RE = re.compile(r'^GDBus\.Error:[\w.\-]+:\s*')


def strip_remote_error(message: str) -> str:
    """Remove the 'GDBus.Error:<name>: ' prefix from an error message."""
    return _REMOTE_ERROR_RE.sub('', message or '', count=1)


def translate_error(error, Gio) -> TransactionError:
    """Map a GLib.Error raised by a bus call to a TransactionError."""
    message = strip_remote_error(error.message)

    if error.matches(IO_ERROR_DOMAIN, Gio.IOErrorEnum.CANCELLED):
        return ClientCancelled(message or "operation cancelled")

    for name in UNREACHABLE_CODES:
        code = getattr(Gio.DBusError, name, None)
        if code is not None and error.matches(DBUS_ERROR_DOMAIN, code):
            return ServiceUnreachable(message)

    return ServiceRejected(message)


def _import_gio():
    try:
        import gi
        gi.require_version('Gio', '2.0')
        from gi.repository import Gio, GLib
    except (ImportError, ValueError) as e:
        raise ServiceUnreachable(
            f"PyGObject not available: {e}. Install python3-gobject."
        )
    return Gio, GLib


class DBusTransactionClient(TransactionClient):
    """Transaction client over D-Bus (GLib/Gio).

    Holds one bus connection (plus one peer connection while waiting for
    a transaction). Both are released by close().
    """

    def __init__(self, bus_type: str = None, bus_name: str = None,
                 progress_callback: Optional[ProgressCallback] = None):
        """Initialize client.

        Args:
            bus_type: 'system' or 'session' (default: from config)
            bus_name: Daemon bus name (default: from config)
            progress_callback: Called with (kind, text, percent) for
                each progress signal of the transaction
        """
        self._bus_type = bus_type or config.get_bus_type()
        self._bus_name = bus_name or config.get_bus_name()
        self._progress = progress_callback
        self._bus = None
        self._sysroot = None
        self._registered = False
        self._peer = None
        self._cancellable = None
        self._loop = None
        self._tracker = None

    # =====================================================================
    # Connection lifecycle
    # =====================================================================

    def open(self):
        """Connect to the bus and register with the daemon."""
        Gio, GLib = _import_gio()

        self._cancellable = Gio.Cancellable()
        bus_type = Gio.BusType.SESSION if self._bus_type == config.BUS_SESSION \
            else Gio.BusType.SYSTEM

        try:
            self._bus = Gio.bus_get_sync(bus_type, self._cancellable)
            self._sysroot = Gio.DBusProxy.new_sync(
                self._bus,
                Gio.DBusProxyFlags.NONE,
                None,
                self._bus_name,
                config.SYSROOT_OBJECT_PATH,
                config.SYSROOT_INTERFACE,
                self._cancellable,
            )
        except GLib.Error as e:
            raise ServiceUnreachable(
                f"Cannot connect to {self._bus_name} on the {self._bus_type} bus: "
                f"{strip_remote_error(e.message)}"
            )

        self._call(
            self._sysroot, 'RegisterClient',
            GLib.Variant('(a{sv})', ({'id': GLib.Variant('s', CLIENT_ID)},)),
        )
        self._registered = True
        logger.debug(f"Registered with {self._bus_name}")

    def close(self):
        """Release the peer and bus connections."""
        if self._bus is None and self._peer is None:
            return

        Gio, GLib = _import_gio()

        if self._peer is not None:
            try:
                self._peer.close_sync(None)
            except GLib.Error as e:
                logger.debug(f"Closing transaction connection: {e.message}")
            self._peer = None

        if self._registered:
            try:
                self._sysroot.call_sync(
                    'UnregisterClient',
                    GLib.Variant('(a{sv})', ({},)),
                    Gio.DBusCallFlags.NONE, -1, None,
                )
            except GLib.Error as e:
                logger.debug(f"UnregisterClient failed: {e.message}")
            self._registered = False

        self._sysroot = None
        self._bus = None
        logger.debug("Disconnected from package daemon")

    @property
    def sysroot_path(self) -> str:
        if self._sysroot is not None:
            value = self._sysroot.get_cached_property('Path')
            if value is not None:
                return value.unpack()
        return config.get_sysroot()

    def _call(self, proxy, method, params):
        """Synchronous method call with errors mapped to TransactionError."""
        Gio, GLib = _import_gio()
        try:
            return proxy.call_sync(
                method, params, Gio.DBusCallFlags.NONE, -1, self._cancellable
            )
        except GLib.Error as e:
            raise translate_error(e, Gio)

    # =====================================================================
    # Submission
    # =====================================================================

    def submit(self, request: ChangeRequest,
               osname: Optional[str] = None) -> TransactionHandle:
        Gio, GLib = _import_gio()

        if self._sysroot is None:
            raise ServiceUnreachable("Not connected to the package daemon")

        # An empty name selects the booted OS
        os_path = self._call(
            self._sysroot, 'GetOS', GLib.Variant('(s)', (osname or '',))
        ).unpack()[0]
        logger.debug(f"OS object: {os_path}")

        try:
            os_proxy = Gio.DBusProxy.new_sync(
                self._bus,
                Gio.DBusProxyFlags.NONE,
                None,
                self._bus_name,
                os_path,
                config.OS_INTERFACE,
                self._cancellable,
            )
        except GLib.Error as e:
            raise translate_error(e, Gio)

        options, added, removed = request.to_wire()
        params = GLib.Variant('(a{sv}asas)', (
            {key: GLib.Variant('b', value) for key, value in options.items()},
            added,
            removed,
        ))
        address = self._call(os_proxy, 'PkgChange', params).unpack()[0]
        return TransactionHandle(address=address, os_path=os_path)

    # =====================================================================
    # Completion
    # =====================================================================

    def await_completion(self, handle: TransactionHandle) -> TransactionOutcome:
        Gio, GLib = _import_gio()

        if self._cancellable is not None and self._cancellable.is_cancelled():
            raise ClientCancelled("cancelled before waiting for the transaction")

        self._loop = GLib.MainLoop()
        self._tracker = tracker = CompletionTracker(on_terminal=self._loop.quit)

        try:
            self._peer = Gio.DBusConnection.new_for_address_sync(
                handle.address,
                Gio.DBusConnectionFlags.AUTHENTICATION_CLIENT,
                None,
                self._cancellable,
            )
            self._peer.connect('closed', self._on_peer_closed, tracker)
            txn = Gio.DBusProxy.new_sync(
                self._peer,
                Gio.DBusProxyFlags.NONE,
                None,
                None,
                config.TRANSACTION_OBJECT_PATH,
                config.TRANSACTION_INTERFACE,
                self._cancellable,
            )
        except GLib.Error as e:
            err = translate_error(e, Gio)
            if isinstance(err, ClientCancelled):
                raise err
            raise ConnectionLost(
                f"Cannot connect to transaction at {handle.address}: {err}"
            )

        txn.connect('g-signal', self._on_transaction_signal, tracker)

        # Ctrl-C cancels the wait instead of raising KeyboardInterrupt
        previous_sigint = self._install_sigint_handler()

        try:
            try:
                just_started = txn.call_sync(
                    'Start', None, Gio.DBusCallFlags.NONE, -1, self._cancellable
                ).unpack()[0]
            except GLib.Error as e:
                err = translate_error(e, Gio)
                if isinstance(err, ClientCancelled):
                    tracker.cancelled()
                elif isinstance(err, ServiceUnreachable):
                    logger.debug(f"Start() failed: {err}")
                    tracker.connection_closed()
                else:
                    raise err
            else:
                tracker.started(just_started)
                if not just_started:
                    logger.info("Transaction already started by another client, reattaching")

            if not tracker.done:
                try:
                    self._loop.run()
                except KeyboardInterrupt:
                    tracker.cancelled()
        finally:
            if previous_sigint is not None:
                signal.signal(signal.SIGINT, previous_sigint)
            self._loop = None
            self._tracker = None

        return tracker.outcome()

    def cancel(self):
        """Stop waiting; the daemon keeps the transaction."""
        if self._cancellable is not None:
            self._cancellable.cancel()
        if self._tracker is not None:
            self._tracker.cancelled()

    def _install_sigint_handler(self):
        """Route SIGINT to cancel(); returns the handler to restore."""
        try:
            return signal.signal(signal.SIGINT, self._on_sigint)
        except ValueError:
            # Signal handlers can only be set from the main thread
            logger.debug("Not in the main thread, SIGINT left alone")
            return None

    def _on_sigint(self, signum, frame):
        logger.info("Interrupted, no longer waiting for the transaction")
        self.cancel()

    def _on_peer_closed(self, connection, remote_peer_vanished, error, tracker):
        if error is not None:
            logger.debug(f"Transaction connection closed: {error.message}")
        tracker.connection_closed()

    def _on_transaction_signal(self, proxy, sender_name, signal_name,
                               parameters, tracker):
        self.dispatch_signal(signal_name, parameters.unpack(), tracker)

    def dispatch_signal(self, signal_name: str, args: tuple,
                        tracker: CompletionTracker):
        """Route one transaction signal (already unpacked)."""
        if signal_name == 'Finished':
            success, message = args
            tracker.finished(bool(success), message)
        elif signal_name == 'Message':
            self._report('message', args[0])
        elif signal_name == 'TaskBegin':
            self._report('task-begin', args[0])
        elif signal_name == 'TaskEnd':
            self._report('task-end', args[0])
        elif signal_name == 'PercentProgress':
            self._report('percent', args[0], int(args[1]))
        elif signal_name == 'ProgressEnd':
            self._report('progress-end', '')
        else:
            logger.debug(f"Ignoring transaction signal {signal_name}")

    def _report(self, kind: str, text: str, percent: int = 0):
        if self._progress:
            self._progress(kind, text, percent)
