"""Local session: runs commands on this host and maps file paths under a root."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Result:
    """Result of a command execution."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Return True if command succeeded (exit code 0)."""
        return self.exit_code == 0

    @property
    def not_found(self) -> bool:
        """Return True if the shell could not find the command."""
        return self.exit_code == 127


class LocalSession:
    """Command runner and path resolver for the host being hardened.

    File paths in rules are absolute (``/etc/login.defs``). When ``root`` is
    not ``/`` they are resolved underneath it, which lets the engine inspect
    a mounted image or a test fixture tree. Commands always run on the host.
    """

    def __init__(self, *, root: str = "/", timeout: int = 120):
        self.root = Path(root)
        self.timeout = timeout

    def path(self, path: str) -> Path:
        """Map an absolute rule path onto the session root."""
        if str(self.root) == "/":
            return Path(path)
        return self.root / str(path).lstrip("/")

    def run(self, cmd: str, *, timeout: int | None = None) -> Result:
        """Execute a shell command and return the result."""
        t = timeout if timeout is not None else self.timeout
        logger.debug("run: %s", cmd)
        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=t,
            )
        except subprocess.TimeoutExpired:
            logger.warning("command timed out after %ss: %s", t, cmd)
            return Result(exit_code=124, stdout="", stderr=f"timed out after {t}s")

        result = Result(
            exit_code=proc.returncode,
            stdout=proc.stdout.rstrip("\n"),
            stderr=proc.stderr.rstrip("\n"),
        )
        if not result.ok:
            logger.debug("exit %d: %s", result.exit_code, result.stderr)
        return result

    @staticmethod
    def is_root() -> bool:
        return os.geteuid() == 0
