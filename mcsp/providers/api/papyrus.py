"""
Base URL - https://api.purpurmc.org/<br>
Source repo - https://github.com/PurpurMC/papyrus
"""
from pydantic import BaseModel

from mcsp.providers.api.base import JsonApi


class VersionBuilds(BaseModel):
    latest: str | None = None
    all: list[str] = []


class ProjectVersion(BaseModel):
    project: str
    version: str
    builds: VersionBuilds


class Papyrus(JsonApi):
    BASE_URL = "https://api.purpurmc.org/"

    def get_version(self, project: str, version: str) -> ProjectVersion | None:
        return self._get(f"/v2/{project}/{version}", ProjectVersion)

    def download_url(self, project: str, version: str, build: str) -> str:
        return self.url(f"/v2/{project}/{version}/{build}/download")
