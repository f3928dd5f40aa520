import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import Callable

from mcsp.errors import ArchiveExtractionFailure, DownloadIntegrityFailure

EntryCallback = Callable[[int], None]


class ArchiveExpander:
    """Extracts zip archives, refusing entries that would escape destination"""

    def __init__(self, progress_interval: int = 1000) -> None:
        self.progress_interval = progress_interval
        self.logger = logging.getLogger("Archive")

    def expand(self, zip_path: Path, dest: Path, on_entry: EntryCallback | None = None) -> int:
        """Returns number of processed entries.<br>
        on_entry is called with the running count every progress_interval entries"""
        dest.mkdir(parents=True, exist_ok=True)
        root = dest.resolve()
        count = 0
        try:
            with zipfile.ZipFile(zip_path, "r") as zf:
                for info in zf.infolist():
                    target = self._target_path(root, info.filename)
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with zf.open(info) as src, open(target, "wb") as out:
                            shutil.copyfileobj(src, out)
                        self._apply_mode(info, target)
                    count += 1
                    if on_entry and count % self.progress_interval == 0:
                        on_entry(count)
        except zipfile.BadZipFile as e:
            raise DownloadIntegrityFailure(
                f"{zip_path.name} is not a valid zip archive: {e}",
                archive=str(zip_path), directory=str(dest)) from e
        except OSError as e:
            raise ArchiveExtractionFailure(
                f"Failed to extract {zip_path.name} into {dest}: {e}",
                archive=str(zip_path), directory=str(dest)) from e
        self.logger.debug(f"Extracted {count} entries from {zip_path.name}")
        return count

    def _target_path(self, root: Path, name: str) -> Path:
        normalized = name.replace("\\", "/")
        target = (root / normalized).resolve()
        if target != root and root not in target.parents:
            raise ArchiveExtractionFailure(
                f"Archive entry {name!r} points outside of {root}", directory=str(root))
        return target

    @staticmethod
    def _apply_mode(info: zipfile.ZipInfo, target: Path) -> None:
        # unix permission bits from archives built on unix
        mode = (info.external_attr >> 16) & 0o777
        if mode and os.name != "nt":
            os.chmod(target, mode)
