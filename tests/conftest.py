import os
import stat
import tempfile
from pathlib import Path

import pytest

# paths creates its directories on import, keep them out of the home directory
os.environ.setdefault("MINEWORKER_DATA_DIR", tempfile.mkdtemp(prefix="mineworker-tests-"))

FAKE_SCREEN = """#!/bin/sh
state="$(dirname "$0")"
echo "$@" >> "$state/calls.log"
case "$1" in
  -ls)
    if [ -s "$state/sessions" ]; then
      echo "There is a screen on:"
      cat "$state/sessions"
      exit 1
    fi
    echo "No Sockets found in /run/screen/S-test."
    exit 1
    ;;
  -S)
    grep -q "$2" "$state/sessions" 2>/dev/null || exit 1
    exit 0
    ;;
esac
exit 0
"""


def write_script(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeScreen:
    def __init__(self, directory: Path):
        self.directory = directory
        self.binary = write_script(directory / "screen", FAKE_SCREEN)
        self.sessions_file = directory / "sessions"
        self.calls_file = directory / "calls.log"

    def add_session(self, name: str):
        with open(self.sessions_file, "a") as f:
            f.write(f"\t4242.{name}\t(10/18/2026 10:00:00 AM)\t(Detached)\n")

    def clear(self):
        self.sessions_file.write_text("")

    @property
    def calls(self):
        if not self.calls_file.exists():
            return []
        return self.calls_file.read_text().splitlines()


@pytest.fixture
def fake_screen(tmp_path):
    directory = tmp_path / "screen"
    directory.mkdir()
    return FakeScreen(directory)


@pytest.fixture
def world(tmp_path):
    path = tmp_path / "world"
    path.mkdir()
    return path
