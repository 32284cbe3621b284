"""Tests for deployment package diffs"""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest

from conftest import make_pkg
from layerpkg.core import deployments
from layerpkg.core.deployments import (
    DeploymentInspectionError,
    OstreeStateInspector,
    PackageDiff,
    SystemStateInspector,
    compute_package_diff,
)
from layerpkg.core.rpmdb import (
    RpmdbError,
    compare_evr,
    evr_key,
    format_evr,
    key_packages,
    make_nevra,
    read_installed_packages,
    rpmvercmp,
)


def pkgmap(*pkgs):
    return {p['name']: p for p in pkgs}


class TestEvr:

    def test_numeric_ordering(self):
        assert evr_key(make_pkg('a', '1.10')) > evr_key(make_pkg('a', '1.9'))

    def test_epoch_dominates(self):
        assert evr_key(make_pkg('a', '1.0', epoch=1)) > evr_key(make_pkg('a', '9.9'))

    def test_release_breaks_ties(self):
        assert evr_key(make_pkg('a', '1.0', release='2')) > evr_key(make_pkg('a', '1.0', release='1'))

    def test_format(self):
        assert format_evr(make_pkg('a', '1.0', release='3')) == '1.0-3'
        assert format_evr(make_pkg('a', '1.0', release='3', epoch=4)) == '4:1.0-3'

    def test_nevra(self):
        assert make_nevra('vim', 2, '9.1', '1', 'x86_64') == 'vim-2:9.1-1.x86_64'
        assert make_nevra('vim', 0, '9.1', '1', 'noarch') == 'vim-9.1-1.noarch'


class TestRpmvercmp:

    @pytest.mark.parametrize('older, newer', [
        ('1.9', '1.10'),
        ('1.0~rc1', '1.0'),
        ('1.0~rc1', '1.0~rc2'),
        ('1.0~~', '1.0~'),
        ('1.0', '1.0^git1'),
        ('1.0^git1', '1.0.1'),
        ('1.0a', '1.0.1'),
        ('a', '1'),
        ('2.0', '2.0.0'),
        ('1.0', '1.0a'),
    ])
    def test_ordering(self, older, newer):
        assert rpmvercmp(older, newer) == -1
        assert rpmvercmp(newer, older) == 1

    @pytest.mark.parametrize('a, b', [
        ('1.0', '1.0'),
        ('1.010', '1.10'),
        ('1.0', '1_0'),
        ('1..0', '1.0'),
    ])
    def test_equal(self, a, b):
        assert rpmvercmp(a, b) == 0

    def test_compare_evr(self):
        assert compare_evr(make_pkg('a', '1.0~rc1'), make_pkg('a', '1.0')) == -1
        assert compare_evr(make_pkg('a', '9.0', epoch=1), make_pkg('a', '1.0', epoch=2)) == -1
        assert compare_evr(make_pkg('a', '1.0', release='2'), make_pkg('a', '1.0', release='10')) == -1
        assert compare_evr(make_pkg('a', '1.0'), make_pkg('a', '1.0')) == 0


class TestComputePackageDiff:

    def test_identical(self):
        pkgs = pkgmap(make_pkg('bash', '5.2'), make_pkg('vim', '9.1'))
        assert compute_package_diff(pkgs, dict(pkgs)).is_empty()

    def test_added_and_removed(self):
        old = pkgmap(make_pkg('bash', '5.2'), make_pkg('nano', '8.0'))
        new = pkgmap(make_pkg('bash', '5.2'), make_pkg('vim-enhanced', '9.1'),
                     make_pkg('htop', '3.3'))

        diff = compute_package_diff(old, new)
        assert [p['name'] for p in diff.added] == ['htop', 'vim-enhanced']
        assert [p['name'] for p in diff.removed] == ['nano']
        assert diff.upgraded == []
        assert diff.downgraded == []

    def test_upgraded_and_downgraded(self):
        old = pkgmap(make_pkg('curl', '8.9.1'), make_pkg('bash', '5.2.26'))
        new = pkgmap(make_pkg('curl', '8.6.0'), make_pkg('bash', '5.2.32'))

        diff = compute_package_diff(old, new)
        assert diff.upgraded == [(old['bash'], new['bash'])]
        assert diff.downgraded == [(old['curl'], new['curl'])]

    def test_empty_inputs(self):
        assert compute_package_diff({}, {}) == PackageDiff()

    def test_prerelease_to_release_is_upgrade(self):
        old = pkgmap(make_pkg('foo', '1.0~rc1'), make_pkg('bar', '1.0a'))
        new = pkgmap(make_pkg('foo', '1.0'), make_pkg('bar', '1.0.1'))

        diff = compute_package_diff(old, new)
        assert [new_pkg['name'] for _, new_pkg in diff.upgraded] == ['bar', 'foo']
        assert diff.downgraded == []

    def test_multilib_order_independent(self):
        x86_64 = make_pkg('glibc', '2.39')
        i686 = make_pkg('glibc', '2.39', arch='i686')

        old = key_packages([x86_64, i686])
        new = key_packages([i686, x86_64])
        assert set(old) == {'glibc.x86_64', 'glibc.i686'}
        assert compute_package_diff(old, new).is_empty()

    def test_multilib_upgrade_pairs_same_arch(self):
        old = key_packages([make_pkg('glibc', '2.39'),
                            make_pkg('glibc', '2.39', arch='i686')])
        new = key_packages([make_pkg('glibc', '2.40', arch='i686'),
                            make_pkg('glibc', '2.40')])

        diff = compute_package_diff(old, new)
        assert [(o['arch'], n['arch']) for o, n in diff.upgraded] == [
            ('i686', 'i686'), ('x86_64', 'x86_64'),
        ]
        assert diff.added == [] and diff.removed == []

    def test_installonly_versions_kept(self):
        old = key_packages([make_pkg('kernel', '6.9.1'), make_pkg('kernel', '6.10.2')])
        new = key_packages([make_pkg('kernel', '6.10.2'), make_pkg('kernel', '6.11.0'),
                            make_pkg('kernel', '6.9.1')])

        assert len(new) == 3
        diff = compute_package_diff(old, new)
        assert [p['version'] for p in diff.added] == ['6.11.0']
        assert diff.removed == []
        assert diff.upgraded == []

    def test_second_installonly_version_is_added(self):
        old = key_packages([make_pkg('kernel', '6.10.2')])
        new = key_packages([make_pkg('kernel', '6.11.0'), make_pkg('kernel', '6.10.2')])

        diff = compute_package_diff(old, new)
        assert [p['version'] for p in diff.added] == ['6.11.0']
        assert diff.removed == [] and diff.upgraded == []

    def test_inspector_is_abstract(self):
        with pytest.raises(TypeError):
            SystemStateInspector()


def make_deployment(osname, csum, serial):
    dep = Mock()
    dep.get_osname.return_value = osname
    dep.get_csum.return_value = csum
    dep.get_deployserial.return_value = serial
    return dep


def make_sysroot(booted, deployments_list):
    sysroot = Mock()
    sysroot.get_booted_deployment.return_value = booted
    sysroot.get_deployments.return_value = deployments_list
    sysroot.get_deployment_directory.side_effect = lambda dep: SimpleNamespace(
        get_path=lambda: f"/ostree/deploy/{dep.get_osname()}/deploy/{dep.get_csum()}.{dep.get_deployserial()}"
    )
    return sysroot


class TestOstreeStateInspector:

    def test_pending_is_first_deployment_of_booted_os(self):
        booted = make_deployment('fedora', 'aaa', 0)
        pending = make_deployment('fedora', 'bbb', 0)
        other = make_deployment('centos', 'ccc', 0)
        sysroot = make_sysroot(booted, [other, pending, booted])

        assert OstreeStateInspector()._find_pending(sysroot, booted) is pending

    def test_no_pending_when_booted_first(self):
        booted = make_deployment('fedora', 'aaa', 0)
        rollback = make_deployment('fedora', 'zzz', 0)
        sysroot = make_sysroot(booted, [booted, rollback])

        assert OstreeStateInspector()._find_pending(sysroot, booted) is None

    def test_same_commit_new_serial_is_pending(self):
        booted = make_deployment('fedora', 'aaa', 0)
        redeploy = make_deployment('fedora', 'aaa', 1)
        sysroot = make_sysroot(booted, [redeploy, booted])

        assert OstreeStateInspector()._find_pending(sysroot, booted) is redeploy

    def test_package_diff(self, monkeypatch):
        booted = make_deployment('fedora', 'aaa', 0)
        pending = make_deployment('fedora', 'bbb', 0)
        sysroot = make_sysroot(booted, [pending, booted])

        packages = {
            '/ostree/deploy/fedora/deploy/aaa.0/usr/share/rpm': pkgmap(make_pkg('bash', '5.2')),
            '/ostree/deploy/fedora/deploy/bbb.0/usr/share/rpm': pkgmap(make_pkg('bash', '5.2'),
                                                                      make_pkg('htop', '3.3')),
        }
        monkeypatch.setattr(deployments, 'read_installed_packages',
                            lambda dbpath: packages[str(dbpath)])

        inspector = OstreeStateInspector()
        monkeypatch.setattr(inspector, '_load_sysroot', lambda path: sysroot)

        diff = inspector.package_diff('/')
        assert [p['name'] for p in diff.added] == ['htop']
        assert diff.removed == []

    def test_no_pending_gives_empty_diff(self, monkeypatch):
        booted = make_deployment('fedora', 'aaa', 0)
        inspector = OstreeStateInspector()
        monkeypatch.setattr(inspector, '_load_sysroot',
                            lambda path: make_sysroot(booted, [booted]))

        assert inspector.package_diff('/').is_empty()

    def test_not_booted(self, monkeypatch):
        inspector = OstreeStateInspector()
        monkeypatch.setattr(inspector, '_load_sysroot',
                            lambda path: make_sysroot(None, []))

        with pytest.raises(DeploymentInspectionError):
            inspector.package_diff('/')

    def test_rpmdb_error_wrapped(self, monkeypatch):
        booted = make_deployment('fedora', 'aaa', 0)
        pending = make_deployment('fedora', 'bbb', 0)

        def broken(dbpath):
            raise RpmdbError(f"No rpmdb at {dbpath}")
        monkeypatch.setattr(deployments, 'read_installed_packages', broken)

        inspector = OstreeStateInspector()
        monkeypatch.setattr(inspector, '_load_sysroot',
                            lambda path: make_sysroot(booted, [pending, booted]))

        with pytest.raises(DeploymentInspectionError, match='No rpmdb'):
            inspector.package_diff('/')


class TestReadInstalledPackages:

    @pytest.fixture
    def fake_rpm(self, monkeypatch):
        """Minimal rpm bindings module with a two-package database."""
        rpm = MagicMock()
        rpm.error = type('error', (Exception,), {})
        rpm.RPMTAG_NAME = 'name'
        rpm.RPMTAG_EPOCH = 'epoch'
        rpm.RPMTAG_VERSION = 'version'
        rpm.RPMTAG_RELEASE = 'release'
        rpm.RPMTAG_ARCH = 'arch'
        rpm._RPMVSF_NOSIGNATURES = 1
        rpm._RPMVSF_NODIGESTS = 2
        headers = [
            {'name': 'bash', 'epoch': None, 'version': '5.2', 'release': '1', 'arch': 'x86_64'},
            {'name': 'gpg-pubkey', 'epoch': None, 'version': 'abc', 'release': '1', 'arch': None},
            {'name': 'glibc', 'epoch': None, 'version': '2.39', 'release': '1', 'arch': 'x86_64'},
            {'name': 'glibc', 'epoch': None, 'version': '2.39', 'release': '1', 'arch': 'i686'},
        ]
        rpm.TransactionSet.return_value.dbMatch.return_value = headers
        monkeypatch.setitem(sys.modules, 'rpm', rpm)
        return rpm

    def test_reads_packages(self, fake_rpm, tmp_path):
        packages = read_installed_packages(tmp_path)

        assert set(packages) == {'bash.x86_64', 'glibc.x86_64', 'glibc.i686'}
        assert packages['bash.x86_64']['nevra'] == 'bash-5.2-1.x86_64'
        assert packages['glibc.i686']['arch'] == 'i686'
        fake_rpm.addMacro.assert_called_once_with('_dbpath', str(tmp_path))
        fake_rpm.delMacro.assert_called_once_with('_dbpath')
        fake_rpm.TransactionSet.return_value.closeDB.assert_called_once_with()

    def test_read_error_closes_db(self, fake_rpm, tmp_path):
        ts = fake_rpm.TransactionSet.return_value
        ts.dbMatch.side_effect = fake_rpm.error('cannot open Packages index')

        with pytest.raises(RpmdbError, match='cannot open Packages'):
            read_installed_packages(tmp_path)
        ts.closeDB.assert_called_once_with()
        fake_rpm.delMacro.assert_called_once_with('_dbpath')

    def test_missing_dbpath(self, fake_rpm, tmp_path):
        with pytest.raises(RpmdbError):
            read_installed_packages(tmp_path / 'usr/share/rpm')
