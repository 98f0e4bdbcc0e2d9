"""Run a shell command and stream its output line by line.

stdout and stderr are read on two threads into one queue, so lines come out in
arrival order. The command runs in its own process group; when the
cancellation event fires a watcher thread kills the whole group.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Literal

logger = logging.getLogger(__name__)

Source = Literal["stdout", "stderr"]

_CANCEL_POLL_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class ShellLine:
    source: Source
    text: str


class ShellCommand:
    """A started ``<shell> -c <command>`` subprocess.

    Iterate to receive :class:`ShellLine` items until both pipes are closed,
    then read :attr:`exit_code`. Construction raises ``OSError`` when the
    process cannot be started.
    """

    def __init__(
        self,
        command: str,
        *,
        cwd: Path | None = None,
        cancel_event: threading.Event | None = None,
        shell: str = "sh",
    ) -> None:
        self.command = command
        self._cancel_event = cancel_event or threading.Event()
        self._lines: queue.Queue[ShellLine | None] = queue.Queue()
        self._exit_code: int | None = None
        self.killed = False

        self._process = subprocess.Popen(
            [shell, "-c", command],
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=os.name == "posix",
        )

        assert self._process.stdout is not None
        assert self._process.stderr is not None
        self._readers = [
            threading.Thread(
                target=self._pump,
                args=(self._process.stdout, "stdout"),
                name=f"shell-stdout-{self._process.pid}",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(self._process.stderr, "stderr"),
                name=f"shell-stderr-{self._process.pid}",
                daemon=True,
            ),
        ]
        for reader in self._readers:
            reader.start()

        threading.Thread(
            target=self._watch_cancellation,
            name=f"shell-cancel-{self._process.pid}",
            daemon=True,
        ).start()

    @property
    def pid(self) -> int:
        return self._process.pid

    def _pump(self, stream: IO[str], source: Source) -> None:
        try:
            for raw in stream:
                self._lines.put(ShellLine(source=source, text=raw.rstrip("\r\n")))
        finally:
            stream.close()
            self._lines.put(None)

    def _running(self) -> bool:
        # A background child can hold the pipes open after the shell itself exits.
        if self._process.poll() is None:
            return True
        return any(reader.is_alive() for reader in self._readers)

    def _watch_cancellation(self) -> None:
        while not self._cancel_event.wait(_CANCEL_POLL_SECONDS):
            if not self._running():
                return
        if self._running():
            self.kill()

    def kill(self) -> None:
        """Kill the process and everything it started."""

        self.killed = True
        logger.info("Killing shell command", extra={"pid": self._process.pid})
        try:
            if os.name == "posix":
                os.killpg(self._process.pid, signal.SIGKILL)
            else:
                self._process.kill()
        except ProcessLookupError:
            pass

    def __iter__(self) -> Iterator[ShellLine]:
        open_streams = len(self._readers)
        while open_streams:
            item = self._lines.get()
            if item is None:
                open_streams -= 1
                continue
            yield item

    def wait(self) -> int:
        if self._exit_code is None:
            code = self._process.wait()
            for reader in self._readers:
                reader.join()
            self._exit_code = code
        return self._exit_code

    @property
    def exit_code(self) -> int:
        return self.wait()


def run_shell_command(
    command: str,
    *,
    cwd: Path | None = None,
    cancel_event: threading.Event | None = None,
    shell: str = "sh",
) -> ShellCommand:
    """Start ``command`` and return a handle streaming its output."""

    return ShellCommand(command, cwd=cwd, cancel_event=cancel_event, shell=shell)
