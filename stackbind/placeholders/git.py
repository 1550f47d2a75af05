"""Repository metadata for the git and project placeholder namespaces."""

import logging
import re
import threading
from pathlib import Path
from typing import Dict, Optional

from ..core.exceptions import CommandError
from ..core.runner import CommandRunner

logger = logging.getLogger("stackbind.placeholders.git")

_BRANCH_UNSAFE = re.compile(r"[^a-z0-9]+")


def clean_branch_name(branch: str) -> str:
    """Lower-case a branch and collapse unsafe characters to '-' (feature/X_1 -> feature-x-1)."""
    return _BRANCH_UNSAFE.sub("-", branch.lower()).strip("-")


class GitInfo:
    """
    Lazily queried git metadata of one working directory.

    Queries run even when the runner is in dry-run mode; results are cached.
    """

    PATHS = ("root", "commit.short", "commit.full", "branch.raw", "branch.clean")

    def __init__(self, cwd: Optional[Path] = None, runner: Optional[CommandRunner] = None):
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.runner = runner or CommandRunner()
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _git(self, *args: str) -> str:
        result = self.runner.run(["git", *args], cwd=self.cwd, run_in_dry_run=True)
        return result.stdout.strip()

    def get(self, path: str) -> Optional[str]:
        """Value for a dotted path, None for unknown paths."""
        if path not in self.PATHS:
            return None
        with self._lock:
            if path in self._cache:
                return self._cache[path]

        if path == "root":
            value = self._git("rev-parse", "--show-toplevel")
        elif path == "commit.short":
            value = self._git("rev-parse", "--short", "HEAD")
        elif path == "commit.full":
            value = self._git("rev-parse", "HEAD")
        elif path == "branch.raw":
            value = self._git("rev-parse", "--abbrev-ref", "HEAD")
        else:
            value = clean_branch_name(self.get("branch.raw"))

        with self._lock:
            self._cache[path] = value
        return value

    def root_or_cwd(self) -> str:
        """Repository root, or the working directory outside a repository."""
        try:
            return self.get("root") or str(self.cwd)
        except CommandError as e:
            logger.debug(f"Not a git repository ({e}), using {self.cwd}")
            return str(self.cwd)
