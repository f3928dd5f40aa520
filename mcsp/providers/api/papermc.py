"""PaperMC Fill API

Base URL - https://fill.papermc.io/v3/
"""
from enum import Enum

from pydantic import AnyUrl, BaseModel

from mcsp.providers.api.base import JsonApi


class Channel(Enum):
    ALPHA = 'ALPHA'
    BETA = 'BETA'
    STABLE = 'STABLE'
    RECOMMENDED = 'RECOMMENDED'


class Checksums(BaseModel):
    sha256: str


class Download(BaseModel):
    checksums: Checksums
    name: str
    size: int
    url: AnyUrl


class Build(BaseModel):
    channel: Channel
    downloads: dict[str, Download]
    id: int

    def get_default_download(self):
        return self.downloads["server:default"]


class PaperMcFill(JsonApi):
    BASE_URL = "https://fill.papermc.io/v3/"

    def get_builds(self, project: str, version: str):
        return self._get_list(f"/projects/{project}/versions/{version}/builds", Build)

    def get_latest_build(self, project: str, version: str):
        return self._get(f"/projects/{project}/versions/{version}/builds/latest", Build)

    def get_build(self, project: str, version: str, id: int):
        return self._get(f"/projects/{project}/versions/{version}/builds/{id}", Build)
