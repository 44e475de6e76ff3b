"""
Shared fixtures for twgcb tests.

Files are evaluated under a temporary root; commands never reach the
host and answer from a per-test script.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from twgcb.local import Result

NOT_FOUND = Result(1, "", "")


class FakeSession:
    """Stand-in for ``LocalSession`` with a temporary root and scripted commands.

    ``on(fragment, ...)`` registers a response for any command containing
    ``fragment``; the most recent registration wins. Unscripted commands
    exit 1 with no output.
    """

    def __init__(self, root: Path):
        self.root = root
        self.timeout = 120
        self.commands: list[str] = []
        self._responses: list[tuple[str, Result]] = []

    def path(self, path: str) -> Path:
        return self.root / str(path).lstrip("/")

    def on(self, fragment: str, stdout: str = "", exit_code: int = 0, stderr: str = "") -> FakeSession:
        self._responses.insert(0, (fragment, Result(exit_code, stdout, stderr)))
        return self

    def run(self, cmd: str, *, timeout: int | None = None) -> Result:
        self.commands.append(cmd)
        for fragment, result in self._responses:
            if fragment in cmd:
                return result
        return NOT_FOUND

    def ran(self, fragment: str) -> bool:
        return any(fragment in cmd for cmd in self.commands)


@pytest.fixture
def session(tmp_path: Path) -> FakeSession:
    return FakeSession(tmp_path)


@pytest.fixture
def write(session: FakeSession):
    """Write a file under the session root: ``write("/etc/login.defs", text, mode=0o644)``."""

    def _write(path: str, text: str, mode: int | None = None) -> Path:
        real = session.path(path)
        real.parent.mkdir(parents=True, exist_ok=True)
        real.write_text(text)
        if mode is not None:
            os.chmod(real, mode)
        return real

    return _write


@pytest.fixture
def read(session: FakeSession):
    """Read a file under the session root."""

    def _read(path: str) -> str:
        return session.path(path).read_text()

    return _read

