import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any

import json5
import yaml
from pydantic import (BaseModel, ConfigDict, Field, ValidationError,
                      field_validator)

from mcsp.__version__ import __version__


class SoftwareType(Enum):
    VANILLA = "vanilla"
    PAPER = "paper"
    PURPUR = "purpur"
    SPIGOT = "spigot"
    FABRIC = "fabric"
    FORGE = "forge"
    NEOFORGE = "neoforge"
    BEDROCK = "bedrock"
    MODPACK_ZIP = "modpack"

    def __str__(self) -> str:
        return self.value


PLUGIN_SOFTWARE = (SoftwareType.PAPER, SoftwareType.PURPUR, SoftwareType.SPIGOT)


class InstallRequest(BaseModel):
    model_config = ConfigDict(frozen=True, use_attribute_docstrings=True)

    software_type: SoftwareType
    target_dir: Path
    version: str = "latest"
    """Minecraft (or Bedrock) version. Upstream-specific strings allowed"""
    build: str | None = None
    """Build override. None means latest/recommended"""
    modpack_source_url: str | None = None
    """Archive URL or provider id such as modrinth:<project id>"""
    mc_version: str | None = None
    """Required to auto-install a loader for client-only modpacks"""
    install_spark: bool = False
    """Downloads spark profiler into plugins/ for plugin-capable software"""

    @field_validator("target_dir")
    @classmethod
    def make_target_absolute(cls, v: Path) -> Path:
        return v.resolve()


class VersionCacheEntry(BaseModel):
    latest: str
    versions: list[str]
    fetched_at: float
    """Clock seconds at fetch time"""

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


class DownloadProgress(BaseModel):
    total_bytes: int | None = None
    current_bytes: int = 0

    @property
    def percent(self) -> int | None:
        if not self.total_bytes:
            return None
        return min(100, round(self.current_bytes * 100 / self.total_bytes))


class PackKind(Enum):
    SERVER_PACK = "SERVER_PACK"
    CLIENT_PACK = "CLIENT_PACK"
    UNKNOWN = "UNKNOWN"


class Loader(Enum):
    FABRIC = "Fabric"
    FORGE = "Forge"
    NEOFORGE = "NeoForge"

    def software_type(self) -> SoftwareType:
        return SoftwareType[self.name]


class ModpackClassification(BaseModel):
    kind: PackKind
    loader: Loader | None = None


class ResolvedArtifact(BaseModel):
    """Concrete result of version resolution"""
    url: str
    version: str
    build: str | None = None
    file_name: str | None = None
    sha1: str | None = None


class InstallStage(Enum):
    RESOLVING = "RESOLVING"
    DOWNLOADING = "DOWNLOADING"
    EXTRACTING = "EXTRACTING"
    CLASSIFYING = "CLASSIFYING"
    NORMALIZING = "NORMALIZING"
    INSTALLING_LOADER = "INSTALLING_LOADER"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class InstallOutcome(BaseModel):
    software_type: SoftwareType
    target_dir: Path
    entrypoint: str | bool
    """Launch script or jar name, True for plain single-jar installs"""
    version: str | None = None
    build: str | None = None
    classification: ModpackClassification | None = None


DEFAULT_USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                      "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")


class Settings(BaseModel):
    """Provisioning engine settings"""
    model_config = ConfigDict(frozen=True, use_attribute_docstrings=True)

    version: str = __version__
    bedrock_cache_ttl: float = 3600
    """Seconds a scraped Bedrock version list stays valid"""
    bedrock_locales: list[str] = ["en-us", "fr-fr"]
    """Download page locales, tried in order"""
    bedrock_fallback_versions: list[str] = [
        "1.26.0.2", "1.21.11.01", "1.21.10.01"]
    """Last known good versions, first one is used as latest"""
    bedrock_scrape_timeout: float = 5
    download_timeout: float = 30
    """Connect/response timeout in seconds"""
    download_retries: int = 2
    user_agent: str = DEFAULT_USER_AGENT
    referer: str = "https://www.minecraft.net/en-us/download/server/bedrock"
    extract_progress_interval: int = Field(1000, gt=0)
    java_executables: dict[str, str] = {}
    """Java label (e.g. "Java 17") to executable path"""
    neoforge_jvm_args: list[str] = ["-Xms4G", "-Xmx4G"]
    max_workers: int = Field(4, gt=0)
    fabric_installer_version: str | None = None

    @staticmethod
    def load(file: Path, logger: logging.Logger) -> "Settings":
        ext = file.name.split(".")[-1]
        d: dict[str, Any]
        with open(file, "r", encoding="utf-8") as f:
            if ext in ["json", "yml", "yaml"]:
                try:
                    d = yaml.load(f, yaml.FullLoader) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"Failed to parse settings file {file}") from e
            elif ext in ["json5", "jsonc"]:
                d = json5.load(f)
            else:
                raise ValueError(
                    f"Cannot find loader for settings extension {ext}")
        ver = d.get("version", None)
        if ver is not None and ver != __version__:
            logger.warning(
                f"Settings were made for different version ({ver}). You might expect errors")
        try:
            return Settings.model_validate(d)
        except ValidationError as e:
            raise ValueError(f"Failed to load settings from {file}") from e

    @staticmethod
    def schema_json(pretty: bool = False) -> str:
        return json.dumps(Settings.model_json_schema(), indent=2 if pretty else None)
