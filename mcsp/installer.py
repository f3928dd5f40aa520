import hashlib
import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from mcsp.archive import ArchiveExpander
from mcsp.classifier import SERVER_STARTERS, ContentClassifier
from mcsp.core import Environment, ProgressSink
from mcsp.downloader import Downloader, create_session
from mcsp.errors import (DownloadFailed, DownloadIntegrityFailure,
                         NetworkUnreachable, ProvisioningError)
from mcsp.loaders import LoaderInstaller
from mcsp.model import (PLUGIN_SOFTWARE, InstallOutcome, InstallRequest,
                        InstallStage, Loader, PackKind, SoftwareType,
                        VersionCacheEntry)
from mcsp.normalizer import DEFAULT_SIDECARS, TreeNormalizer
from mcsp.registry import Registry
from mcsp.resolver import LATEST, VersionResolver
from mcsp.utils import write_eula

SERVER_JAR = "server.jar"
MODPACK_ARCHIVE = "modpack.zip"
TEMP_EXTRACT = "temp_extract"
BEDROCK_ARCHIVE = "bedrock.zip"
SPARK_URL = ("https://ci.lucko.me/job/spark/lastSuccessfulBuild/artifact/"
             "spark-bukkit/build/libs/spark-bukkit.jar")


@dataclass
class InstallContext:
    request: InstallRequest
    sink: ProgressSink
    logger: logging.Logger
    stages: list[InstallStage] = field(default_factory=list)

    @property
    def folder(self) -> Path:
        return self.request.target_dir

    @property
    def stage(self) -> InstallStage | None:
        return self.stages[-1] if self.stages else None

    def enter(self, stage: InstallStage, message: str | None = None):
        self.stages.append(stage)
        self.logger.debug(f"Stage {stage.value}")
        if message:
            self.sink.status(message)


class Pipeline(ABC):
    """Fixed stage sequence for one family of software types"""

    @abstractmethod
    def run(self, engine: "ProvisioningEngine", ctx: InstallContext) -> InstallOutcome:
        ...

    def cleanup(self, ctx: InstallContext) -> None:
        """Removes transient working files, called on every exit path"""
        pass


class JarPipeline(Pipeline):
    """Single server jar. Skips extraction"""

    def run(self, engine, ctx):
        req = ctx.request
        ctx.enter(InstallStage.RESOLVING, f"Resolving {req.software_type} {req.version}...")
        artifact = engine.resolver.resolve(req.software_type, req.version, req.build)

        ctx.enter(InstallStage.DOWNLOADING, f"Downloading {req.software_type} {artifact.version}...")
        jar = ctx.folder / SERVER_JAR
        try:
            engine.downloader.download(artifact.url, jar, ctx.sink)
        except DownloadFailed as e:
            if req.software_type == SoftwareType.SPIGOT:
                raise ProvisioningError(
                    "Spigot download failed. No mirror found for this version.",
                    url=artifact.url) from e
            raise
        if artifact.sha1:
            verify_sha1(jar, artifact.sha1, artifact.url)

        ctx.enter(InstallStage.FINALIZING, "Finalizing...")
        if req.install_spark and req.software_type in PLUGIN_SOFTWARE:
            engine.install_spark(ctx.folder, ctx.sink)
        write_eula(ctx.folder)
        return InstallOutcome(software_type=req.software_type, target_dir=ctx.folder,
                              entrypoint=True, version=artifact.version, build=artifact.build)


class LoaderPipeline(Pipeline):
    """Forge and NeoForge. Optionally installs on top of a modpack archive"""

    def run(self, engine, ctx):
        req = ctx.request
        archive = None
        if req.modpack_source_url:
            ctx.enter(InstallStage.RESOLVING, "Resolving modpack source...")
            url, _ = engine.resolver.resolve_modpack_url(req.modpack_source_url)
            ctx.enter(InstallStage.DOWNLOADING, "Downloading modpack...")
            archive = engine.downloader.download(url, ctx.folder / MODPACK_ARCHIVE, ctx.sink)
        loader = SOFTWARE_LOADERS[req.software_type]
        mc = req.mc_version or req.version
        if mc == LATEST:
            ctx.enter(InstallStage.RESOLVING, "Resolving latest Minecraft release...")
            mc = engine.resolver.latest_release()
        ctx.enter(InstallStage.INSTALLING_LOADER)
        entrypoint = engine.loaders.install_loader(
            ctx.folder, loader, mc, req.build, archive, ctx.sink)
        ctx.enter(InstallStage.FINALIZING)
        write_eula(ctx.folder)
        return InstallOutcome(software_type=req.software_type, target_dir=ctx.folder,
                              entrypoint=entrypoint, version=mc, build=req.build)

    def cleanup(self, ctx):
        archive = ctx.folder / MODPACK_ARCHIVE
        if archive.exists():
            archive.unlink()


class BedrockPipeline(Pipeline):
    """Bedrock dedicated server zip. Skips classification and loaders"""

    def run(self, engine, ctx):
        req = ctx.request
        ctx.enter(InstallStage.RESOLVING, "Resolving Bedrock version...")
        if req.version == "latest":
            latest = engine.resolver.list_bedrock_versions(ctx.sink).latest
        else:
            latest = req.version
        artifact = engine.resolver.resolve_bedrock(latest, engine.windows)
        exe = "bedrock_server.exe" if engine.windows else "bedrock_server"

        ctx.enter(InstallStage.DOWNLOADING, f"Downloading Bedrock server {artifact.version}...")
        archive = ctx.folder / BEDROCK_ARCHIVE
        try:
            engine.downloader.download(artifact.url, archive, ctx.sink)
        except (DownloadFailed, NetworkUnreachable) as e:
            raise ProvisioningError(
                f"Failed to download Bedrock server {artifact.version}: {e}. "
                f"Upload {exe} manually into {ctx.folder} (Files tab) and start the server.",
                url=artifact.url) from e

        ctx.enter(InstallStage.EXTRACTING, "Extracting Bedrock server...")
        engine.expander.expand(archive, ctx.folder,
                               lambda n: ctx.sink.status(f"Extracted {n} files..."))
        archive.unlink()

        ctx.enter(InstallStage.NORMALIZING)
        engine.normalizer.normalize(ctx.folder, (*DEFAULT_SIDECARS, BEDROCK_ARCHIVE), (exe,))

        ctx.enter(InstallStage.FINALIZING, "Finalizing...")
        binary = ctx.folder / exe
        if not binary.is_file():
            raise ProvisioningError(
                f"{exe} was not found in the downloaded archive. "
                f"Upload {exe} manually into {ctx.folder} (Files tab).", url=artifact.url)
        if not engine.windows:
            os.chmod(binary, 0o755)
        write_eula(ctx.folder)
        return InstallOutcome(software_type=req.software_type, target_dir=ctx.folder,
                              entrypoint=exe, version=artifact.version)

    def cleanup(self, ctx):
        archive = ctx.folder / BEDROCK_ARCHIVE
        if archive.exists():
            archive.unlink()


class ModpackPipeline(Pipeline):
    """Modpack archive. Installs a loader when the pack turns out client-only"""

    def run(self, engine, ctx):
        req = ctx.request
        if not req.modpack_source_url:
            raise ProvisioningError("Modpack install requires a modpack source")
        ctx.enter(InstallStage.RESOLVING, "Resolving modpack source...")
        url, pack_version = engine.resolver.resolve_modpack_url(req.modpack_source_url)

        ctx.enter(InstallStage.DOWNLOADING, "Downloading modpack...")
        archive = engine.downloader.download(url, ctx.folder / MODPACK_ARCHIVE, ctx.sink)

        ctx.enter(InstallStage.EXTRACTING, "Extracting modpack...")
        temp = ctx.folder / TEMP_EXTRACT
        engine.expander.expand(archive, temp,
                               lambda n: ctx.sink.status(f"Extracted {n} files..."))

        ctx.enter(InstallStage.CLASSIFYING, "Analyzing modpack content...")
        classification = engine.classifier.classify(temp)

        ctx.enter(InstallStage.NORMALIZING, "Moving files into place...")
        if engine.normalizer.flatten_single_folder(temp):
            # content was one level too deep
            classification = engine.classifier.classify(temp)
        ctx.logger.info(f"Modpack classified as {classification.kind.value}"
                        + (f" ({classification.loader.value})" if classification.loader else ""))
        engine.normalizer.merge_overrides(temp)
        copy_tree_over(temp, ctx.folder)

        entrypoint: str | bool = detect_server_starter(ctx.folder)
        if classification.kind == PackKind.CLIENT_PACK and classification.loader:
            if req.mc_version:
                ctx.enter(InstallStage.INSTALLING_LOADER,
                          f"Client modpack detected, installing {classification.loader.value}...")
                entrypoint = engine.loaders.install_loader(
                    ctx.folder, classification.loader, req.mc_version, req.build, sink=ctx.sink)
            else:
                ctx.sink.status(
                    f"Warning: client modpack needs {classification.loader.value} but no "
                    "Minecraft version was given. Install the loader manually.")

        ctx.enter(InstallStage.FINALIZING, "Finalizing...")
        write_eula(ctx.folder)
        return InstallOutcome(software_type=req.software_type, target_dir=ctx.folder,
                              entrypoint=entrypoint, version=pack_version,
                              classification=classification)

    def cleanup(self, ctx):
        shutil.rmtree(ctx.folder / TEMP_EXTRACT, ignore_errors=True)
        archive = ctx.folder / MODPACK_ARCHIVE
        if archive.exists():
            archive.unlink()


SOFTWARE_LOADERS = {
    SoftwareType.FORGE: Loader.FORGE,
    SoftwareType.NEOFORGE: Loader.NEOFORGE,
}

PIPELINES: Registry[SoftwareType, Pipeline] = Registry(Pipeline)
_jar = JarPipeline()
for _t in (SoftwareType.VANILLA, SoftwareType.PAPER, SoftwareType.PURPUR,
           SoftwareType.SPIGOT, SoftwareType.FABRIC):
    PIPELINES.register(_t, _jar)
_loader = LoaderPipeline()
PIPELINES.register(SoftwareType.FORGE, _loader)
PIPELINES.register(SoftwareType.NEOFORGE, _loader)
PIPELINES.register(SoftwareType.BEDROCK, BedrockPipeline())
PIPELINES.register(SoftwareType.MODPACK_ZIP, ModpackPipeline())


def verify_sha1(file: Path, expected: str, url: str) -> None:
    h = hashlib.sha1()
    with open(file, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    if h.hexdigest().lower() != expected.lower():
        file.unlink()
        raise DownloadIntegrityFailure(
            f"Checksum mismatch for {file.name}: expected sha1 {expected}, got {h.hexdigest()}",
            url=url)


def copy_tree_over(src: Path, dest: Path) -> None:
    """Copies src contents into dest, overwriting existing files"""
    for child in src.iterdir():
        target = dest / child.name
        if child.is_dir():
            if target.exists() and not target.is_dir():
                target.unlink()
            shutil.copytree(child, target, dirs_exist_ok=True)
        else:
            if target.is_dir():
                shutil.rmtree(target)
            shutil.copy2(child, target)


def detect_server_starter(folder: Path) -> str | bool:
    for name in sorted(SERVER_STARTERS):
        if (folder / name).is_file():
            return name
    jars = sorted(p.name for p in folder.glob("*.jar") if "server" in p.name)
    return jars[0] if jars else True


class ProvisioningEngine:
    """Runs install pipelines. One install per target directory at a time"""

    def __init__(self, env: Environment, resolver: VersionResolver | None = None,
                 downloader: Downloader | None = None,
                 pipelines: Registry[SoftwareType, Pipeline] = PIPELINES) -> None:
        self.env = env
        self.settings = env.settings
        self.logger = logging.getLogger("Engine")
        self.session = create_session(self.settings)
        self.downloader = downloader or Downloader(self.settings, self.session)
        self.resolver = resolver or VersionResolver(
            self.settings, self.session, build_validator=env.validate_build_id)
        self.expander = ArchiveExpander(self.settings.extract_progress_interval)
        self.classifier = ContentClassifier()
        self.normalizer = TreeNormalizer()
        self.loaders = LoaderInstaller(env, self.resolver, self.downloader,
                                       self.expander, self.normalizer)
        self.pipelines = pipelines
        self.logger.debug(f"Registered {pipelines.size()} pipelines: {[k.value for k in pipelines.keys()]}")
        self.windows = os.name == "nt"
        self._executor = ThreadPoolExecutor(max_workers=self.settings.max_workers,
                                            thread_name_prefix="mcsp-install")
        self._active: set[Path] = set()
        self._active_lock = threading.Lock()

    def _acquire(self, folder: Path) -> None:
        with self._active_lock:
            if folder in self._active:
                raise ProvisioningError(
                    f"An install into {folder} is already running", directory=str(folder))
            self._active.add(folder)

    def _release(self, folder: Path) -> None:
        with self._active_lock:
            self._active.discard(folder)

    def install(self, request: InstallRequest, sink: ProgressSink | None = None) -> InstallOutcome:
        """Runs the pipeline for request on the calling thread"""
        self._acquire(request.target_dir)
        try:
            return self._run(request, sink)
        finally:
            self._release(request.target_dir)

    def submit(self, request: InstallRequest,
               sink: ProgressSink | None = None) -> "Future[InstallOutcome]":
        """Schedules install on the worker pool. Refuses a directory already being installed"""
        self._acquire(request.target_dir)

        def task():
            try:
                return self._run(request, sink)
            finally:
                self._release(request.target_dir)
        try:
            return self._executor.submit(task)
        except RuntimeError:
            self._release(request.target_dir)
            raise

    def _run(self, request: InstallRequest, sink: ProgressSink | None) -> InstallOutcome:
        software = request.software_type
        pipeline = self.pipelines.require(software)
        logger = logging.getLogger(f"Install-{software}")
        logger.setLevel(logging.DEBUG if self.env.debug else logging.INFO)
        ctx = InstallContext(request, sink or self.env.sink_factory(), logger)
        self.logger.info(f"🔄 Installing {software} {request.version} into {request.target_dir}")
        try:
            request.target_dir.mkdir(parents=True, exist_ok=True)
            outcome = pipeline.run(self, ctx)
        except ProvisioningError as e:
            stage = self._fail(ctx, e)
            raise e.with_context(directory=str(request.target_dir), software=software.value,
                                 stage=stage)
        except Exception as e:
            stage = self._fail(ctx, e)
            raise ProvisioningError(
                f"Installing {software} failed: {e}", directory=str(request.target_dir),
                software=software.value, stage=stage) from e
        finally:
            pipeline.cleanup(ctx)
        ctx.enter(InstallStage.COMPLETE, "Installation complete")
        self.logger.info(f"✅ Installed {software} into {request.target_dir}")
        return outcome

    def _fail(self, ctx: InstallContext, e: Exception) -> str:
        stage = ctx.stage.value if ctx.stage else "SETUP"
        ctx.enter(InstallStage.FAILED, f"Installation failed: {e}")
        self.logger.error(f"❌ Install into {ctx.folder} failed during {stage}")
        return stage

    def install_spark(self, folder: Path, sink: ProgressSink | None = None) -> bool:
        """Downloads spark profiler into plugins/. Returns False if it is already there"""
        out = folder / "plugins" / "spark.jar"
        if out.exists():
            self.logger.info("⏩ Spark is already installed")
            return False
        if sink:
            sink.status("Installing Spark profiler...")
        self.downloader.download(SPARK_URL, out, sink)
        return True

    def list_bedrock_versions(self) -> VersionCacheEntry:
        return self.resolver.list_bedrock_versions()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self.session.close()


