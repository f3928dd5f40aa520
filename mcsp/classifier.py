import logging
import zipfile
from pathlib import Path

from mcsp.model import Loader, ModpackClassification, PackKind

SERVER_STARTERS = {"run.bat", "run.sh", "start.bat"}

# checked in order, first hit wins
LOADER_MARKERS: list[tuple[tuple[str, ...], Loader]] = [
    (("fabric.mod.json",), Loader.FABRIC),
    (("META-INF/mods.toml", "mcmod.info"), Loader.FORGE),
    (("META-INF/neoforge.mods.toml",), Loader.NEOFORGE),
]


class ContentClassifier:
    """Decides whether an extracted modpack is ready to run or needs a loader"""

    def __init__(self) -> None:
        self.logger = logging.getLogger("Classifier")

    def classify(self, folder: Path) -> ModpackClassification:
        names = [p.name for p in folder.iterdir()]
        if any(self._is_server_starter(n) for n in names):
            return ModpackClassification(kind=PackKind.SERVER_PACK)
        if (folder / "libraries").is_dir():
            return ModpackClassification(kind=PackKind.SERVER_PACK)

        mods = folder / "mods"
        if not mods.is_dir():
            mods = folder / "overrides" / "mods"
            if not mods.is_dir():
                return ModpackClassification(kind=PackKind.UNKNOWN)

        for jar in sorted(mods.iterdir()):
            if not jar.is_file() or not jar.name.endswith(".jar"):
                continue
            loader = self.detect_loader(jar)
            if loader:
                self.logger.debug(f"{jar.name} identifies loader {loader.value}")
                return ModpackClassification(kind=PackKind.CLIENT_PACK, loader=loader)
        # legacy packs without manifests are Forge most of the time
        return ModpackClassification(kind=PackKind.CLIENT_PACK, loader=Loader.FORGE)

    @staticmethod
    def _is_server_starter(name: str) -> bool:
        return name in SERVER_STARTERS or (name.endswith(".jar") and "server" in name)

    def detect_loader(self, jar: Path) -> Loader | None:
        try:
            with zipfile.ZipFile(jar, "r") as zf:
                entries = set(zf.namelist())
        except (zipfile.BadZipFile, OSError) as e:
            self.logger.debug(f"Skipping unreadable jar {jar.name}: {e}")
            return None
        for markers, loader in LOADER_MARKERS:
            if any(m in entries for m in markers):
                return loader
        return None
