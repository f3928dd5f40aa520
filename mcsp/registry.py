from enum import Enum
from typing import Generic, Optional, TypeVar

from mcsp.errors import UnsupportedSoftware

T = TypeVar("T")
K = TypeVar("K", bound=Enum)


class Registry(Generic[K, T]):
    """Closed mapping of enum keys to entries, filled once at import time"""

    def __init__(self, t: type[T]):
        self.registry_type = t
        self._entries: dict[K, T] = {}

    def register(self, key: K, value: T) -> None:
        if key in self._entries:
            raise ValueError(f"Key {key} is already registered")
        self._entries[key] = value

    def get(self, key: K) -> Optional[T]:
        return self._entries.get(key)

    def require(self, key: K) -> T:
        entry = self.get(key)
        if entry is None:
            raise UnsupportedSoftware(
                f"No {self.registry_type.__name__} registered for {key.value!r}")
        return entry

    def keys(self) -> list[K]:
        return list(self._entries.keys())

    def size(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        cls = self.registry_type
        fqn = f"{cls.__module__}.{cls.__qualname__}"
        return f"Registry<{fqn}>({self.size()} entries)"
