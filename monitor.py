import os
import sys
import time
import random
import re
from dataclasses import dataclass, field
from typing import NamedTuple

import utils

INITIALIZING = "Initializing..."
SUCCESS_MARKER = "#### build completed successfully"
TAIL_LINES = 30

PROGRESS_RE = re.compile(r"(\d+)% (\d+)/(\d+)")


class ProgressSnapshot(NamedTuple):
    percent: int
    done: int
    total: int

    @property
    def raw(self):
        return f"{self.percent}% {self.done}/{self.total}"

    def __str__(self):
        return f"{self.percent}% ({self.done}/{self.total})"


@dataclass(frozen=True)
class BuildSession:
    rom_name: str
    device: str
    android_version: str
    build_type: str
    maintainer: str
    start_time: float = field(default_factory=time.time)
    message_id: object = None


def tail(path, n=TAIL_LINES, block=4096):
    """Last ``n`` complete lines of ``path``, read backwards from the end."""
    with open(path, "rb") as f:
        pos = f.seek(0, os.SEEK_END)
        data = b""
        while pos > 0 and data.count(b"\n") <= n:
            step = min(block, pos)
            pos -= step
            f.seek(pos)
            data = f.read(step) + data

    lines = data.decode("utf-8", errors="replace").split("\n")
    if lines[-1] == "":
        lines.pop()
    # First line is cut off when the read stopped mid-file
    if pos > 0:
        lines = lines[1:]
    return lines[-n:]


def fetch_progress(log_path, n=TAIL_LINES):
    """Latest progress marker in the last ``n`` lines of the log.

    Returns ``INITIALIZING`` when the log is missing or holds no marker yet.
    """
    try:
        lines = tail(log_path, n)
    except OSError:
        return INITIALIZING

    last = None
    for log_line in lines:
        for match in PROGRESS_RE.finditer(log_line):
            last = match
    if last is None:
        return INITIALIZING
    return ProgressSnapshot(*(int(g) for g in last.groups()))


def build_succeeded(log_path):
    if not os.path.exists(log_path):
        return False
    with open(log_path, "r", errors="replace") as f:
        return any(SUCCESS_MARKER in log_line for log_line in f)


class BuildMonitor:
    """Polls the build log while the build runs and edits the status card."""

    def __init__(
        self,
        session,
        notifier,
        log_path,
        interval=120,
        sleep=time.sleep,
        rng=random,
        out=sys.stdout,
    ):
        self.session = session
        self.notifier = notifier
        self.log_path = log_path
        self.interval = interval
        self.sleep = sleep
        self.rng = rng
        self.out = out
        self.last_reported = None

    def poll(self):
        """One poll. Returns True when an edit was sent for a new snapshot."""
        progress = fetch_progress(self.log_path)
        self.out.write(f"Build progress: {progress}\r")
        self.out.flush()

        if progress == INITIALIZING or progress == self.last_reported:
            return False

        caption = utils.build_caption(
            self.session, self.rng.choice(utils.QUOTES), progress
        )
        try:
            self.notifier.edit_caption(self.session.message_id, caption, retries=1)
        except Exception as e:
            print(f"\n[BOT] Progress update failed: {e}")
        self.last_reported = progress
        return True

    def run(self, process):
        while process.poll() is None:
            self.poll()
            self.sleep(self.interval)
        self.out.write("\n\n")
        return process.wait()
