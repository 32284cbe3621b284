"""Shared fixtures: in-memory daemon client and state inspector."""

import pytest

from layerpkg.cli import colors
from layerpkg.core import config
from layerpkg.core.deployments import PackageDiff, SystemStateInspector
from layerpkg.core.transaction import (
    ClientCancelled,
    Succeeded,
    TransactionClient,
    TransactionHandle,
)


def make_pkg(name, version, release="1.fc40", epoch=0, arch="x86_64"):
    """Package dict as read from an rpmdb."""
    if epoch:
        nevra = f"{name}-{epoch}:{version}-{release}.{arch}"
    else:
        nevra = f"{name}-{version}-{release}.{arch}"
    return {
        'name': name,
        'epoch': epoch,
        'version': version,
        'release': release,
        'arch': arch,
        'nevra': nevra,
    }


class FakeTransactionClient(TransactionClient):
    """Deterministic daemon: every submitted transaction ends with `outcome`."""

    def __init__(self, outcome=None, submit_error=None, wait_error=None,
                 sysroot="/sysroot"):
        self.outcome = outcome if outcome is not None else Succeeded()
        self.submit_error = submit_error
        self.wait_error = wait_error
        self.submitted = []
        self.awaited = []
        self.opened = False
        self.closed = False
        self.cancelled = False
        self._sysroot = sysroot

    def open(self):
        self.opened = True

    def close(self):
        self.closed = True

    def submit(self, request, osname=None):
        self.submitted.append((request, osname))
        if self.submit_error is not None:
            raise self.submit_error
        return TransactionHandle(
            address=f"unix:abstract=/layerpkg/txn{len(self.submitted)}",
            os_path="/org/projectatomic/rpmostree1/fedora",
        )

    def await_completion(self, handle):
        self.awaited.append(handle)
        if self.cancelled:
            raise ClientCancelled("cancelled while waiting for the transaction")
        if self.wait_error is not None:
            raise self.wait_error
        return self.outcome

    def cancel(self):
        self.cancelled = True

    @property
    def sysroot_path(self):
        return self._sysroot


class FakeGLibError(Exception):
    """Stand-in for GLib.Error (domain string + integer code)."""

    def __init__(self, domain, code, message):
        super().__init__(message)
        self.domain = domain
        self.code = code
        self.message = message

    def matches(self, domain, code):
        return self.domain == domain and self.code == code


class FakeInspector(SystemStateInspector):
    """Returns a fixed diff and records the sysroots it was asked about."""

    def __init__(self, diff=None):
        self.diff = diff if diff is not None else PackageDiff()
        self.calls = []

    def package_diff(self, sysroot_path):
        self.calls.append(sysroot_path)
        return self.diff


@pytest.fixture(autouse=True)
def plain_output():
    """No ANSI codes in captured output."""
    colors.init(nocolor=True)
    yield
    colors.init(nocolor=True)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch, tmp_path):
    """Isolate tests from /etc/layerpkg.conf and LAYERPKG_* variables."""
    for name in ('LAYERPKG_BUS', 'LAYERPKG_BUS_NAME', 'LAYERPKG_SYSROOT'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('LAYERPKG_CONFIG', str(tmp_path / 'no-such-layerpkg.conf'))
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def fake_client():
    return FakeTransactionClient()


@pytest.fixture
def vim_diff():
    return PackageDiff(added=[make_pkg('vim-enhanced', '9.1.0'),
                              make_pkg('local-build', '1.0', release='1')])


@pytest.fixture
def fake_inspector(vim_diff):
    return FakeInspector(vim_diff)
