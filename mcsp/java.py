from mcsp.model import Loader
from mcsp.utils import minecraft_minor


def required_java(mc_version: str, loader: Loader | None = None) -> int:
    """Java major version needed to run the installer for ``mc_version``.

    Unparseable versions are treated as modern ones.
    """
    try:
        minor = minecraft_minor(mc_version)
    except ValueError:
        return 21
    if loader == Loader.NEOFORGE:
        # NeoForge exists since 1.20.1, only 1.20.1-1.20.4 run on 17
        parts = mc_version.split(".")
        patch = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else 0
        return 17 if minor == 20 and patch <= 4 else 21
    if minor >= 21:
        return 21
    if minor >= 17:
        return 17
    if minor >= 12:
        return 11
    return 8


def java_label(major: int) -> str:
    return f"Java {major}"
