"""Display utilities for layerpkg CLI.

Provides:
- TransactionProgressDisplay: renders daemon progress signals
- print_package_diff: prints the pending deployment's package changes
"""

import shutil
import sys
from typing import List

from . import colors
from ..core.deployments import PackageDiff
from ..core.rpmdb import format_evr


def get_terminal_width() -> int:
    """Get terminal width, with fallback to 80 columns."""
    try:
        return shutil.get_terminal_size().columns
    except Exception:
        return 80


class TransactionProgressDisplay:
    """Render transaction progress as it streams from the daemon.

    Messages and task boundaries get a line each:
      Checking out tree 5f3a... done
      Importing (1/2) vim-enhanced-9.1.0-1.fc40.x86_64.rpm

    Percent progress is redrawn in place on a tty:
      Downloading: [██████░░░░░░░░░░░░░░] 30%
    """

    def __init__(self, bar_width: int = 20, stream=None):
        self.bar_width = bar_width
        self.stream = stream or sys.stdout
        self.in_task = False
        self.in_percent = False

    def __call__(self, kind: str, text: str, percent: int = 0):
        if kind == 'message':
            self._end_percent()
            self._write(text + "\n")
        elif kind == 'task-begin':
            self._end_percent()
            self._write(f"{text}... ")
            self.in_task = True
        elif kind == 'task-end':
            if self.in_task:
                self._write(f"{colors.success(text)}\n")
            else:
                self._write(f"{text}\n")
            self.in_task = False
        elif kind == 'percent':
            self._percent(text, percent)
        elif kind == 'progress-end':
            self._end_percent()

    def render_bar(self, text: str, percent: int) -> str:
        percent = max(0, min(100, percent))
        filled = percent * self.bar_width // 100
        bar = '█' * filled + '░' * (self.bar_width - filled)
        return f"{text}: [{bar}] {percent}%"

    def _percent(self, text: str, percent: int):
        line = self.render_bar(text, percent)
        if self.stream.isatty():
            width = get_terminal_width()
            if len(line) > width - 1:
                line = line[:width - 4] + "..."
            self._write(f"\r\033[K{line}")
            self.in_percent = True
        elif percent >= 100:
            self._write(line + "\n")

    def _end_percent(self):
        if self.in_task:
            self._write("\n")
            self.in_task = False
        if self.in_percent:
            self._write("\n")
            self.in_percent = False

    def finish(self):
        """Terminate any line left open by a task or a progress bar."""
        self._end_percent()

    def _write(self, text: str):
        self.stream.write(text)
        self.stream.flush()


def format_package_diff(diff: PackageDiff) -> List[str]:
    """Format a package diff as lines, one section per change type."""
    lines = []

    if diff.upgraded:
        lines.append("Upgraded:")
        for old, new in diff.upgraded:
            lines.append(
                f"  {colors.pkg_upgraded(new['name'])} "
                f"{format_evr(old)} -> {format_evr(new)}"
            )

    if diff.downgraded:
        lines.append("Downgraded:")
        for old, new in diff.downgraded:
            lines.append(
                f"  {colors.pkg_downgraded(new['name'])} "
                f"{format_evr(old)} -> {format_evr(new)}"
            )

    if diff.removed:
        lines.append("Removed:")
        for pkg in diff.removed:
            lines.append(f"  {colors.pkg_removed(pkg['nevra'])}")

    if diff.added:
        lines.append("Added:")
        for pkg in diff.added:
            lines.append(f"  {colors.pkg_added(pkg['nevra'])}")

    return lines


def print_package_diff(diff: PackageDiff):
    """Print a package diff (nothing when empty)."""
    for line in format_package_diff(diff):
        print(line)
