import re
from functools import cmp_to_key
from pathlib import Path
from typing import Iterable

EULA_FILE = "eula.txt"

BUILD_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]{0,63}$")


class FriendlyException(Exception):
    """Friendly exceptions are used to hide stacktraces from user."""
    pass


def version_key(version: str) -> tuple[int, ...]:
    """Numeric key of a dotted version. Non-numeric components count as 0"""
    parts: list[int] = []
    for p in version.split("."):
        digits = re.match(r"\d+", p)
        parts.append(int(digits.group()) if digits else 0)
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """Compares component by component, missing trailing components are 0"""
    ka, kb = version_key(a), version_key(b)
    n = max(len(ka), len(kb))
    ka += (0,) * (n - len(ka))
    kb += (0,) * (n - len(kb))
    if ka == kb:
        return 0
    return 1 if ka > kb else -1


def sort_versions_desc(versions: Iterable[str]) -> list[str]:
    # cmp keeps "1.21" and "1.21.0" equal, sorted() is stable
    return sorted(versions, key=cmp_to_key(compare_versions), reverse=True)


def minecraft_minor(mc_version: str) -> int:
    """Returns 20 for 1.20.4. Raises ValueError for unparseable versions"""
    parts = mc_version.split(".")
    if len(parts) < 2 or not parts[1].isdigit():
        raise ValueError(f"Unrecognized Minecraft version {mc_version!r}")
    return int(parts[1])


def validate_build_id(candidate: str) -> bool:
    return bool(BUILD_ID_PATTERN.fullmatch(candidate)) and ".." not in candidate


def write_eula(folder: Path) -> Path:
    p = folder / EULA_FILE
    p.write_text("eula=true", encoding="utf-8")
    return p
