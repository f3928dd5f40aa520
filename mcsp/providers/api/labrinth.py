"""Modrinth API

Modrinth - https://modrinth.com/<br>
Labrinth - https://github.com/modrinth/code/tree/main/apps/labrinth
"""
from enum import Enum

from pydantic import BaseModel

from mcsp.providers.api.base import JsonApi


class VersionType(Enum):
    RELEASE = "release"
    BETA = "beta"
    ALPHA = "alpha"


class ModrinthFile(BaseModel):
    hashes: dict[str, str] = {}
    url: str
    filename: str
    primary: bool
    size: int


class Version(BaseModel):
    id: str
    project_id: str
    name: str
    version_number: str
    game_versions: list[str] = []
    version_type: VersionType
    files: list[ModrinthFile]

    def get_primary(self):
        return next((f for f in self.files if f.primary), None)


class Modrinth(JsonApi):
    BASE_URL = "https://api.modrinth.com"

    def get_versions(self, project_id: str):
        """Newest first"""
        return self._get_list(f"/v2/project/{project_id}/version", Version)
