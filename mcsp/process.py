import logging
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import IO, Callable

from mcsp.errors import InstallerProcessFailed

LineHandler = Callable[[str], None]

STDERR_TAIL = 20


class InstallerProcess:
    """Child process that is drained for its whole lifetime.

    Use as a context manager. Leaving the block terminates and reaps the child
    if it is still running, whatever happened inside.
    """

    def __init__(self, command: list[str], cwd: Path, name: str,
                 on_line: LineHandler | None = None, tail: int = STDERR_TAIL) -> None:
        self.command = command
        self.cwd = cwd
        self.name = name
        self.on_line = on_line
        self.logger = logging.getLogger(f"Installer-{name}")
        self.stderr_tail: deque[str] = deque(maxlen=tail)
        self._process: subprocess.Popen[str] | None = None
        self._threads: list[threading.Thread] = []

    def __enter__(self) -> "InstallerProcess":
        self.logger.debug(f"Running {' '.join(self.command)} in {self.cwd}")
        self._process = subprocess.Popen(
            self.command,
            cwd=str(self.cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        self._threads = [
            self._pump(self._process.stdout, False),
            self._pump(self._process.stderr, True),
        ]
        return self

    def _pump(self, stream: IO[str] | None, is_err: bool) -> threading.Thread:
        def run():
            if stream is None:
                return
            for line in stream:
                line = line.rstrip("\r\n")
                if is_err:
                    self.stderr_tail.append(line)
                self.logger.debug(line)
                if self.on_line and line:
                    self.on_line(line)
            stream.close()
        t = threading.Thread(target=run, name=f"{self.name}-{'err' if is_err else 'out'}",
                             daemon=True)
        t.start()
        return t

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def wait(self, timeout: float | None = None) -> int:
        """Waits for the exit event and for both streams to be fully drained"""
        if self._process is None:
            raise RuntimeError("Process is not started")
        code = self._process.wait(timeout=timeout)
        for t in self._threads:
            t.join()
        return code

    def check(self, timeout: float | None = None) -> None:
        code = self.wait(timeout)
        if code != 0:
            raise InstallerProcessFailed(self.name, code, list(self.stderr_tail),
                                         directory=str(self.cwd))

    def __exit__(self, exc_type, exc, tb) -> None:
        p = self._process
        if p is None:
            return
        if p.poll() is None:
            self.logger.warning(f"Terminating {self.name} installer (pid {p.pid})")
            p.terminate()
            try:
                p.wait(timeout=10)
            except subprocess.TimeoutExpired:
                p.kill()
                p.wait()
        for t in self._threads:
            t.join(timeout=5)


def run_installer(command: list[str], cwd: Path, name: str,
                  on_line: LineHandler | None = None) -> None:
    with InstallerProcess(command, cwd, name, on_line) as proc:
        proc.check()
