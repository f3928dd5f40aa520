import logging
import os
import threading
import time
from typing import Callable, TypeVar
from urllib.parse import urlparse

import requests

from mcsp.core import BuildIdValidator, ProgressSink
from mcsp.downloader import is_dns_failure
from mcsp.errors import (DownloadFailed, InvalidBuildIdentifier,
                         NetworkUnreachable, ProvisioningError,
                         UnsupportedSoftware, UpstreamVersionNotFound)
from mcsp.model import (ResolvedArtifact, Settings, SoftwareType,
                        VersionCacheEntry)
from mcsp.providers.api import bedrock
from mcsp.providers.api.base import ApiError
from mcsp.providers.api.fabric import FabricMeta
from mcsp.providers.api.forge import ForgeFiles
from mcsp.providers.api.labrinth import Modrinth
from mcsp.providers.api.mojang import PistonMeta
from mcsp.providers.api.neoforge import NeoForgeMaven, neoforge_prefix
from mcsp.providers.api.papermc import Channel, PaperMcFill
from mcsp.providers.api.papyrus import Papyrus
from mcsp.utils import sort_versions_desc, validate_build_id

R = TypeVar("R")

LATEST = "latest"
RECOMMENDED = "recommended"
SPIGOT_MIRROR = "https://download.getspigot.org/spigot"
MODRINTH_PREFIX = "modrinth:"

Clock = Callable[[], float]


class VersionResolver:
    """Turns an abstract version request into a concrete download"""

    def __init__(self, settings: Settings, session: requests.Session,
                 clock: Clock = time.time,
                 build_validator: BuildIdValidator = validate_build_id) -> None:
        self.settings = settings
        self.session = session
        self.clock = clock
        self.validate_build_id = build_validator
        self.logger = logging.getLogger("Resolver")
        t = settings.download_timeout
        self.mojang = PistonMeta(session, timeout=t)
        self.paper = PaperMcFill(session, timeout=t)
        self.purpur = Papyrus(session, timeout=t)
        self.fabric = FabricMeta(session, timeout=t)
        self.forge = ForgeFiles(session, timeout=t)
        self.neoforge = NeoForgeMaven(session, timeout=t)
        self.modrinth = Modrinth(session, timeout=t)
        self.bedrock = bedrock.BedrockPage(
            session, timeout=settings.bedrock_scrape_timeout)
        self._bedrock_cache: VersionCacheEntry | None = None
        self._cache_lock = threading.Lock()

    def _call(self, what: str, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except requests.RequestException as e:
            url = e.request.url if e.request is not None else None
            if is_dns_failure(e):
                host = urlparse(url).hostname if url else what
                raise NetworkUnreachable(host or what, url) from e
            raise DownloadFailed(url or what, str(e)) from e
        except ApiError as e:
            raise ProvisioningError(
                f"Failed to fetch {what}: {e}", url=e.url) from e

    def _check_build(self, build: str | None) -> None:
        if build and build not in (LATEST, RECOMMENDED) and not self.validate_build_id(build):
            raise InvalidBuildIdentifier(build)

    def resolve(self, software: SoftwareType, version: str,
                build: str | None = None) -> ResolvedArtifact:
        self._check_build(build)
        match software:
            case SoftwareType.VANILLA:
                return self.resolve_vanilla(version)
            case SoftwareType.PAPER:
                return self.resolve_paper(version, build)
            case SoftwareType.PURPUR:
                return self.resolve_purpur(version, build)
            case SoftwareType.SPIGOT:
                return self.resolve_spigot(version)
            case SoftwareType.FABRIC:
                return self.resolve_fabric(version, build)
            case SoftwareType.FORGE:
                return self.resolve_forge(version, build)
            case SoftwareType.NEOFORGE:
                return self.resolve_neoforge(version, build)
            case SoftwareType.BEDROCK:
                return self.resolve_bedrock(version)
        raise UnsupportedSoftware(f"{software} has no version source")

    def latest_release(self) -> str:
        manifest = self._call("Mojang version manifest", self.mojang.get_manifest)
        if manifest is None:
            raise UpstreamVersionNotFound("Mojang version manifest is unavailable")
        return manifest.latest.release

    def resolve_vanilla(self, version: str) -> ResolvedArtifact:
        manifest = self._call("Mojang version manifest", self.mojang.get_manifest)
        if manifest is None:
            raise UpstreamVersionNotFound("Mojang version manifest is unavailable")
        if version == LATEST:
            version = manifest.latest.release
        entry = manifest.find(version)
        if entry is None:
            raise UpstreamVersionNotFound(
                f"Version {version} not found in Mojang manifest", software="vanilla")
        meta = self._call(f"metadata of {version}",
                          lambda: self.mojang.get_version_meta(entry))
        if meta is None or meta.server is None:
            raise UpstreamVersionNotFound(
                f"Minecraft {version} does not publish a server download", software="vanilla")
        return ResolvedArtifact(url=meta.server.url, version=version,
                                file_name="server.jar", sha1=meta.server.sha1)

    def resolve_paper(self, version: str, build: str | None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        b = None
        if build in (None, LATEST):
            b = self._call("Paper builds", lambda: self.paper.get_latest_build("paper", version))
        elif build == RECOMMENDED:
            builds = self._call("Paper builds", lambda: self.paper.get_builds("paper", version))
            stable = [x for x in builds or []
                      if x.channel in (Channel.STABLE, Channel.RECOMMENDED)]
            b = max(stable, key=lambda x: x.id) if stable else None
        elif build.isdigit():
            b = self._call("Paper build",
                           lambda: self.paper.get_build("paper", version, int(build)))
        if b is None:
            raise UpstreamVersionNotFound(
                f"Failed to find Paper build {build or LATEST} for MC {version}", software="paper")
        download = b.get_default_download()
        return ResolvedArtifact(url=str(download.url), version=version,
                                build=str(b.id), file_name=download.name)

    def resolve_purpur(self, version: str, build: str | None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        ver = self._call("Purpur version", lambda: self.purpur.get_version("purpur", version))
        if ver is None:
            raise UpstreamVersionNotFound(f"Unknown Purpur version {version}", software="purpur")
        builds = ver.builds
        if build in (None, LATEST, RECOMMENDED):
            chosen = builds.latest or (builds.all[-1] if builds.all else None)
        else:
            chosen = build if build in builds.all else None
        if not chosen:
            raise UpstreamVersionNotFound(
                f"Failed to find Purpur build {build or LATEST} for MC {version}", software="purpur")
        return ResolvedArtifact(url=self.purpur.download_url("purpur", version, chosen),
                                version=version, build=chosen,
                                file_name=f"purpur-{version}-{chosen}.jar")

    def resolve_spigot(self, version: str) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        # no official binaries, spigot only ships BuildTools
        return ResolvedArtifact(url=f"{SPIGOT_MIRROR}/spigot-{version}.jar",
                                version=version, file_name=f"spigot-{version}.jar")

    def resolve_fabric(self, version: str, build: str | None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        loader = build if build not in (None, LATEST, RECOMMENDED) else None
        if loader is None:
            loaders = self._call("Fabric loaders", self.fabric.get_loaders)
            if not loaders:
                raise UpstreamVersionNotFound("Fabric meta returned no loader versions",
                                              software="fabric")
            loader = loaders[0].version
        installer = self.settings.fabric_installer_version
        if installer is None:
            installers = self._call("Fabric installers", self.fabric.get_installers)
            if not installers:
                raise UpstreamVersionNotFound("Fabric meta returned no installer versions",
                                              software="fabric")
            stable = [i for i in installers if i.stable]
            installer = (stable or installers)[0].version
        return ResolvedArtifact(url=self.fabric.server_jar_url(version, loader, installer),
                                version=version, build=loader, file_name="server.jar")

    def resolve_forge(self, version: str, build: str | None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        forge_version = build if build not in (None, LATEST, RECOMMENDED) else None
        if forge_version is None:
            promos = self._call("Forge promotions", self.forge.get_promotions)
            if promos is not None:
                order = ("latest", "recommended") if build == LATEST else ("recommended", "latest")
                forge_version = promos.get(version, order[0]) or promos.get(version, order[1])
        if not forge_version:
            raise UpstreamVersionNotFound(
                f"No Forge version found for Minecraft {version}", software="forge")
        return ResolvedArtifact(url=self.forge.installer_url(version, forge_version),
                                version=version, build=forge_version,
                                file_name="forge-installer.jar")

    def resolve_neoforge(self, version: str, build: str | None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.latest_release()
        neo_version = build if build not in (None, LATEST, RECOMMENDED) else None
        if neo_version is None:
            data = self._call("NeoForge versions", self.neoforge.get_versions)
            prefix = neoforge_prefix(version)
            matching = [v for v in (data.versions if data else []) if v.startswith(prefix)]
            # upstream lists oldest first
            neo_version = matching[-1] if matching else None
        if not neo_version:
            raise UpstreamVersionNotFound(
                f"No NeoForge version found for {version}", software="neoforge")
        return ResolvedArtifact(url=self.neoforge.installer_url(neo_version),
                                version=version, build=neo_version,
                                file_name="neoforge-installer.jar")

    def resolve_bedrock(self, version: str, windows: bool | None = None) -> ResolvedArtifact:
        if version == LATEST:
            version = self.list_bedrock_versions().latest
        if windows is None:
            windows = os.name == "nt"
        return ResolvedArtifact(url=bedrock.download_url(version, windows), version=version,
                                file_name="bedrock.zip")

    def list_bedrock_versions(self, sink: ProgressSink | None = None) -> VersionCacheEntry:
        with self._cache_lock:
            cached = self._bedrock_cache
            if cached and cached.is_fresh(self.clock(), self.settings.bedrock_cache_ttl):
                return cached
            for locale in self.settings.bedrock_locales:
                if sink:
                    sink.status(f"Consulting official Bedrock manifest ({locale})...")
                try:
                    html = self.bedrock.get_page(locale)
                except (requests.RequestException, ApiError) as e:
                    self.logger.warning(f"Bedrock version scrape failed for {locale}: {e}")
                    continue
                versions = bedrock.parse_versions(html or "")
                if not versions:
                    self.logger.debug(f"No Bedrock versions found on {locale} page")
                    continue
                ordered = sort_versions_desc(versions)
                self._bedrock_cache = VersionCacheEntry(
                    latest=ordered[0], versions=ordered, fetched_at=self.clock())
                return self._bedrock_cache
        fallback = list(self.settings.bedrock_fallback_versions)
        self.logger.warning(f"Using fallback Bedrock versions {fallback}")
        return VersionCacheEntry(latest=fallback[0], versions=fallback, fetched_at=self.clock())

    def list_builds(self, software: SoftwareType, mc_version: str) -> list[str]:
        """Known builds for a Minecraft version, in upstream order"""
        match software:
            case SoftwareType.PAPER:
                builds = self._call("Paper builds",
                                    lambda: self.paper.get_builds("paper", mc_version))
                return [str(b.id) for b in builds or []]
            case SoftwareType.PURPUR:
                ver = self._call("Purpur version",
                                 lambda: self.purpur.get_version("purpur", mc_version))
                return list(ver.builds.all) if ver else []
            case SoftwareType.FORGE:
                promos = self._call("Forge promotions", self.forge.get_promotions)
                if promos is None:
                    return []
                found = (promos.get(mc_version, "recommended"), promos.get(mc_version, "latest"))
                return list(dict.fromkeys(v for v in found if v))
            case SoftwareType.NEOFORGE:
                data = self._call("NeoForge versions", self.neoforge.get_versions)
                prefix = neoforge_prefix(mc_version)
                return [v for v in (data.versions if data else []) if v.startswith(prefix)]
        raise UnsupportedSoftware(f"Listing builds is not supported for {software}")

    def resolve_modpack_url(self, source: str) -> tuple[str, str | None]:
        """Returns download url and resolved version name"""
        if not source.startswith(MODRINTH_PREFIX):
            return source, None
        project_id = source.removeprefix(MODRINTH_PREFIX)
        versions = self._call(f"Modrinth project {project_id}",
                              lambda: self.modrinth.get_versions(project_id))
        if not versions:
            raise UpstreamVersionNotFound(
                f"Modrinth project {project_id} has no versions", url=source)
        ver = versions[0]
        file = ver.get_primary() or (ver.files[0] if ver.files else None)
        if file is None:
            raise UpstreamVersionNotFound(
                f"Modrinth version {ver.name} has no files", url=source)
        return file.url, ver.name
