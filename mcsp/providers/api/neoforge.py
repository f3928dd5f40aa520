"""NeoForged maven API"""
from pydantic import BaseModel, Field

from mcsp.providers.api.base import JsonApi

RELEASES_URL = "https://maven.neoforged.net/releases/net/neoforged/neoforge"


class MavenVersions(BaseModel):
    is_snapshot: bool = Field(False, alias="isSnapshot")
    versions: list[str] = []
    """Oldest first"""


def neoforge_prefix(mc_version: str) -> str:
    """1.21.1 -> '21.1.', 1.21 -> '21.0.'"""
    parts = mc_version.split(".")
    if parts and parts[0] == "1":
        parts = parts[1:]
    if len(parts) == 1:
        parts.append("0")
    return ".".join(parts[:2]) + "."


class NeoForgeMaven(JsonApi):
    BASE_URL = "https://maven.neoforged.net/api/maven/"

    def get_versions(self):
        return self._get("/versions/releases/net/neoforged/neoforge", MavenVersions)

    @staticmethod
    def installer_url(version: str) -> str:
        return f"{RELEASES_URL}/{version}/neoforge-{version}-installer.jar"
