"""Fabric meta - https://meta.fabricmc.net/"""
from pydantic import BaseModel

from mcsp.providers.api.base import JsonApi


class LoaderVersion(BaseModel):
    version: str
    stable: bool = False


class InstallerVersion(BaseModel):
    version: str
    stable: bool = False
    url: str | None = None


class FabricMeta(JsonApi):
    BASE_URL = "https://meta.fabricmc.net/"

    def get_loaders(self):
        """Newest first, as published"""
        return self._get_list("/v2/versions/loader", LoaderVersion)

    def get_installers(self):
        return self._get_list("/v2/versions/installer", InstallerVersion)

    def server_jar_url(self, mc_version: str, loader: str, installer: str) -> str:
        return self.url(f"/v2/versions/loader/{mc_version}/{loader}/{installer}/server/jar")
