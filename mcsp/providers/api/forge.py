"""Forge promotions and maven"""
from pydantic import BaseModel

from mcsp.providers.api.base import JsonApi

MAVEN_URL = "https://maven.minecraftforge.net/net/minecraftforge/forge"


class Promotions(BaseModel):
    homepage: str = ""
    promos: dict[str, str] = {}

    def get(self, mc_version: str, kind: str) -> str | None:
        return self.promos.get(f"{mc_version}-{kind}")


class ForgeFiles(JsonApi):
    BASE_URL = "https://files.minecraftforge.net/net/minecraftforge/forge/"

    def get_promotions(self):
        return self._get("/promotions_slim.json", Promotions)

    @staticmethod
    def installer_url(mc_version: str, build: str) -> str:
        long_version = f"{mc_version}-{build}"
        return f"{MAVEN_URL}/{long_version}/forge-{long_version}-installer.jar"
