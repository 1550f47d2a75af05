"""One-shot commands run during a deploy (psql, git)."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .deploy_context import DeployContext
from .exceptions import CommandError
from .logging_config import secret_masking_filter

logger = logging.getLogger("stackbind.runner")

# Keep error messages readable when a command dumps a lot on failure.
MAX_DETAIL_CHARS = 2000


@dataclass(frozen=True)
class CompletedCommand:
    cmd: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""


def render_command(cmd: Sequence[str]) -> str:
    """Shell-quoted command line with registered secrets masked."""
    return secret_masking_filter.mask("$ " + " ".join(shlex.quote(str(t)) for t in cmd))


class CommandRunner:
    """
    subprocess wrapper honouring preview mode and the deploy deadline.

    In dry-run mode commands are only echoed through `printer`, unless the
    caller passes run_in_dry_run (read-only queries such as git metadata).
    """

    def __init__(
        self,
        *,
        dry_run: bool = False,
        printer: Callable[[str], None] | None = None,
        deploy_context: DeployContext | None = None,
    ) -> None:
        self.dry_run = dry_run
        self.deploy_context = deploy_context
        self._printer = printer or logger.info

    def emit(self, message: str) -> None:
        self._printer(message)

    def _timeout(self, rendered: str, timeout: float | None) -> float | None:
        if self.deploy_context is None:
            return timeout
        remaining = self.deploy_context.check_deadline(f"running {rendered}")
        if remaining is None:
            return timeout
        return remaining if timeout is None else min(timeout, remaining)

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
        run_in_dry_run: bool = False,
    ) -> CompletedCommand:
        argv = tuple(str(token) for token in cmd)
        rendered = render_command(argv)
        if self.dry_run and not run_in_dry_run:
            self.emit(f"[dry-run] {rendered}")
            return CompletedCommand(argv, 0)

        effective_timeout = self._timeout(rendered, timeout)
        run_env = dict(os.environ)
        run_env.update({str(k): str(v) for k, v in (env or {}).items()})

        logger.debug(f"Running {rendered}")
        try:
            completed = subprocess.run(
                list(argv),
                cwd=str(cwd) if cwd else None,
                env=run_env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=effective_timeout,
            )
        except FileNotFoundError as e:
            raise CommandError(f"command not found: {rendered}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"command timed out after {effective_timeout:.1f}s: {rendered}"
            ) from e

        result = CompletedCommand(argv, completed.returncode, completed.stdout, completed.stderr)
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()[-MAX_DETAIL_CHARS:]
            message = f"command failed with exit code {result.returncode}: {rendered}"
            if detail:
                message += "\n" + secret_masking_filter.mask(detail)
            raise CommandError(message)
        return result
