import logging
import shutil
from pathlib import Path
from typing import Iterable

OVERRIDES_DIR = "overrides"
DEFAULT_SIDECARS = ("eula.txt", "server.properties")
IGNORED_ENTRIES = ("__MACOSX",)
# server content, never a wrapper
CONTENT_DIRS = ("mods", "config", "libraries", "plugins", OVERRIDES_DIR, "world")


class TreeNormalizer:
    """Collapses archive layouts so the runnable root lands in the target folder"""

    def __init__(self) -> None:
        self.logger = logging.getLogger("Normalizer")

    def merge_overrides(self, root: Path) -> bool:
        """Merges overrides/ over root, overwriting existing files"""
        overrides = root / OVERRIDES_DIR
        if not overrides.is_dir():
            return False
        self.logger.info("Applying CurseForge overrides folder")
        for child in overrides.iterdir():
            target = root / child.name
            if child.is_dir():
                if target.exists() and not target.is_dir():
                    target.unlink()
                shutil.copytree(child, target, dirs_exist_ok=True)
            else:
                if target.is_dir():
                    shutil.rmtree(target)
                shutil.copy2(child, target)
        shutil.rmtree(overrides)
        return True

    def flatten_single_folder(self, root: Path, executables: Iterable[str] = (),
                              sidecars: Iterable[str] = DEFAULT_SIDECARS) -> bool:
        """Moves children of a lone wrapper directory up into root.
        No-op when any of executables is already present in root"""
        exe = list(executables)
        if any((root / e).exists() for e in exe):
            return False
        skip = set(sidecars)
        candidates = [p for p in root.iterdir()
                      if p.name not in skip
                      and p.name not in IGNORED_ENTRIES
                      and not p.name.startswith(".")]
        if len(candidates) != 1 or not candidates[0].is_dir():
            return False
        wrapper = candidates[0]
        if wrapper.name.lower() in CONTENT_DIRS:
            return False
        self.logger.info(f"Found single nested folder {wrapper.name!r}. Flattening")
        # wrapper may contain an entry named like itself
        staging = wrapper.with_name(wrapper.name + ".flatten")
        wrapper.rename(staging)
        for child in list(staging.iterdir()):
            target = root / child.name
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            shutil.move(str(child), str(target))
        staging.rmdir()
        return True

    def normalize(self, root: Path, sidecars: Iterable[str] = DEFAULT_SIDECARS,
                  executables: Iterable[str] = ()) -> None:
        exe = list(executables)
        if any((root / e).exists() for e in exe):
            self.logger.debug("Executable present in root, nothing to normalize")
            return
        self.merge_overrides(root)
        self.flatten_single_folder(root, exe, sidecars)
