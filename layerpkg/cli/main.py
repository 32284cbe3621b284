"""
Main CLI entry point for layerpkg

Provides layered package commands with short aliases:
- layerpkg add / layerpkg install / layerpkg i
- layerpkg remove / layerpkg uninstall / layerpkg rm
"""

import argparse
import sys

from .. import __version__
from .commands import cmd_pkg_add, cmd_pkg_remove


def check_dependencies() -> list:
    """Check for required Python modules.

    Returns:
        List of (package, purpose) for missing modules (empty if all OK)
    """
    missing = []

    # PyGObject (required to talk to the daemon over D-Bus)
    try:
        import gi
    except ImportError:
        missing.append(('python3-gobject', 'D-Bus communication'))

    # rpm bindings (required for the deployment package diff)
    try:
        import rpm
    except ImportError:
        missing.append(('python3-rpm', 'deployment package diff'))

    return missing


def print_missing_dependencies(missing: list):
    """Print error message for missing dependencies."""
    print("ERROR: Missing required Python modules:\n", file=sys.stderr)
    for pkg, purpose in missing:
        print(f"  - {pkg} ({purpose})", file=sys.stderr)
    print(f"\nInstall with:", file=sys.stderr)
    print(f"  dnf install {' '.join(pkg for pkg, _ in missing)}", file=sys.stderr)


class AliasedSubParsersAction(argparse._SubParsersAction):
    """Custom action to support command aliases in argparse."""

    def add_parser(self, name, **kwargs):
        aliases = kwargs.pop('aliases', [])
        parser = super().add_parser(name, **kwargs)

        for alias in aliases:
            self._name_parser_map[alias] = parser

        return parser


def _add_change_options(parser: argparse.ArgumentParser):
    """Options shared by add and remove."""
    parser.add_argument(
        '--os',
        metavar='OSNAME',
        help='Operate on provided OSNAME (default: booted OS)'
    )
    parser.add_argument(
        '--reboot', '-r',
        action='store_true',
        help='Initiate a reboot after the change is prepared'
    )
    parser.add_argument(
        '--dry-run', '-n',
        action='store_true',
        help='Exit after printing the transaction'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all commands and aliases."""

    parser = argparse.ArgumentParser(
        prog='layerpkg',
        description='Manage layered packages on image-based systems',
        epilog='Use "layerpkg <command> --help" for command-specific help.'
    )

    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'layerpkg {__version__}'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Do not show transaction progress'
    )

    parser.add_argument(
        '--nocolor',
        action='store_true',
        help='Disable colored output'
    )

    parser.register('action', 'parsers', AliasedSubParsersAction)

    subparsers = parser.add_subparsers(
        dest='command',
        title='commands',
        metavar='<command>'
    )

    # =========================================================================
    # add / install / i
    # =========================================================================
    add_parser = subparsers.add_parser(
        'add', aliases=['install', 'i'],
        help='Download and install layered RPM packages'
    )
    add_parser.add_argument(
        'packages', nargs='+', metavar='PACKAGE',
        help='Package name, or path to a local .rpm file'
    )
    _add_change_options(add_parser)

    # =========================================================================
    # remove / uninstall / rm
    # =========================================================================
    remove_parser = subparsers.add_parser(
        'remove', aliases=['uninstall', 'rm'],
        help='Remove one or more layered packages'
    )
    remove_parser.add_argument(
        'packages', nargs='+', metavar='PACKAGE',
        help='Name of an installed layered package'
    )
    _add_change_options(remove_parser)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbose flag
    if getattr(args, 'verbose', False):
        import logging
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr
        )

    from . import colors
    colors.init(nocolor=getattr(args, 'nocolor', False))

    if not args.command:
        parser.print_help()
        return 1

    missing = check_dependencies()
    if missing:
        print_missing_dependencies(missing)
        return 1

    from ..core.config import ConfigError
    try:
        if args.command in ('add', 'install', 'i'):
            return cmd_pkg_add(args)

        elif args.command in ('remove', 'uninstall', 'rm'):
            return cmd_pkg_remove(args)

    except ConfigError as e:
        print(colors.error(f"error: {e}"), file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
