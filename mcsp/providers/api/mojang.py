"""Mojang piston-meta version manifest"""
from pydantic import BaseModel, Field

from mcsp.providers.api.base import JsonApi


class LatestVersions(BaseModel):
    release: str
    snapshot: str


class ManifestVersion(BaseModel):
    id: str
    type: str
    url: str


class VersionManifest(BaseModel):
    latest: LatestVersions
    versions: list[ManifestVersion]

    def find(self, id: str):
        return next((v for v in self.versions if v.id == id), None)


class DownloadInfo(BaseModel):
    sha1: str
    size: int
    url: str


class JavaVersion(BaseModel):
    major_version: int = Field(alias="majorVersion")


class VersionMeta(BaseModel):
    id: str
    downloads: dict[str, DownloadInfo] = {}
    java_version: JavaVersion | None = Field(None, alias="javaVersion")

    @property
    def server(self):
        return self.downloads.get("server")


class PistonMeta(JsonApi):
    BASE_URL = "https://piston-meta.mojang.com/"

    def get_manifest(self):
        return self._get("/mc/game/version_manifest_v2.json", VersionManifest)

    def get_version_meta(self, version: ManifestVersion):
        return self._get(version.url, VersionMeta)
