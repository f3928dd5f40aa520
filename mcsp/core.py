import logging
import shutil
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

import tqdm

from mcsp.errors import ProvisioningError
from mcsp.model import Settings
from mcsp.utils import validate_build_id


class ProgressSink(ABC):
    """Receives coarse status messages and fine-grained byte/entry counters"""

    @abstractmethod
    def status(self, message: str) -> None:
        ...

    @abstractmethod
    def progress(self, current: int, total: int | None, percent: int | None) -> None:
        ...

    def finish(self) -> None:
        """Called when a counted operation is done"""
        pass


class LoggingSink(ProgressSink):
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("Progress")
        self._last_percent: int | None = None

    def status(self, message: str) -> None:
        self.logger.info(message)

    def progress(self, current: int, total: int | None, percent: int | None) -> None:
        if percent is None:
            return
        # only every 10%
        bucket = percent // 10
        if bucket != self._last_percent:
            self._last_percent = bucket
            self.logger.debug(f"{current}/{total} bytes ({percent}%)")

    def finish(self) -> None:
        self._last_percent = None


class TqdmSink(LoggingSink):
    """Console sink used by the CLI. Renders one bar per download"""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        super().__init__(logger)
        self.bar: tqdm.tqdm | None = None

    def progress(self, current: int, total: int | None, percent: int | None) -> None:
        if self.bar is None:
            self.bar = tqdm.tqdm(total=total, unit="B", unit_scale=True,
                                 unit_divisor=1024, leave=False)
        self.bar.update(current - self.bar.n)

    def finish(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None


class CollectingSink(ProgressSink):
    """Keeps every event in memory"""

    def __init__(self) -> None:
        self.statuses: list[str] = []
        self.progresses: list[tuple[int, int | None, int | None]] = []
        self._lock = threading.Lock()

    def status(self, message: str) -> None:
        with self._lock:
            self.statuses.append(message)

    def progress(self, current: int, total: int | None, percent: int | None) -> None:
        with self._lock:
            self.progresses.append((current, total, percent))


class JavaProvider(ABC):
    @abstractmethod
    def ensure_java(self, version_label: str) -> str:
        """Returns absolute path to a java executable for label like 'Java 17'"""
        ...


class ConfiguredJavaProvider(JavaProvider):
    """Looks up configured executables and falls back to java on PATH"""

    def __init__(self, executables: dict[str, str]) -> None:
        self.executables = executables
        self.logger = logging.getLogger("Java")

    def ensure_java(self, version_label: str) -> str:
        configured = self.executables.get(version_label)
        if configured:
            return configured
        found = shutil.which("java")
        if not found:
            raise ProvisioningError(
                f"{version_label} is required but no java executable was found. "
                f"Install it or set java_executables[{version_label!r}] in settings.")
        self.logger.warning(
            f"No executable configured for {version_label}, using {found}")
        return found


BuildIdValidator = Callable[[str], bool]


@dataclass
class Environment:
    settings: Settings
    java: JavaProvider
    validate_build_id: BuildIdValidator = validate_build_id
    debug: bool = False
    sink_factory: Callable[[], ProgressSink] = field(default=LoggingSink)

    @staticmethod
    def create(settings: Settings | None = None, debug: bool = False) -> "Environment":
        s = settings or Settings()
        return Environment(s, ConfiguredJavaProvider(s.java_executables), debug=debug)
