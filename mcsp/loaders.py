import logging
from pathlib import Path
from typing import Callable

from mcsp.archive import ArchiveExpander
from mcsp.core import Environment, LoggingSink, ProgressSink
from mcsp.downloader import Downloader
from mcsp.errors import InvalidBuildIdentifier
from mcsp.java import java_label, required_java
from mcsp.model import Loader, SoftwareType
from mcsp.normalizer import DEFAULT_SIDECARS, TreeNormalizer
from mcsp.process import LineHandler, run_installer
from mcsp.resolver import VersionResolver
from mcsp.utils import write_eula

RUN_SCRIPTS = ("run.bat", "run.sh")
DEFAULT_ENTRYPOINT = "run.bat"
JVM_ARGS_FILE = "user_jvm_args.txt"

InstallerRunner = Callable[[list[str], Path, str, LineHandler | None], None]


class LoaderInstaller:
    """Installs Forge/NeoForge through their installer jar and Fabric as a server jar"""

    def __init__(self, env: Environment, resolver: VersionResolver, downloader: Downloader,
                 expander: ArchiveExpander, normalizer: TreeNormalizer,
                 runner: InstallerRunner = run_installer) -> None:
        self.env = env
        self.resolver = resolver
        self.downloader = downloader
        self.expander = expander
        self.normalizer = normalizer
        self.runner = runner
        self.logger = logging.getLogger("LoaderInstaller")

    def install_loader(self, server_dir: Path, loader: Loader, mc_version: str,
                       build: str | None = None, local_archive: Path | None = None,
                       sink: ProgressSink | None = None) -> str:
        """Returns launch entrypoint relative to server_dir"""
        sink = sink or LoggingSink(self.logger)
        if loader == Loader.FABRIC:
            return self.install_fabric(server_dir, mc_version, build, sink)
        if build and not self.env.validate_build_id(build):
            raise InvalidBuildIdentifier(build)

        label = java_label(required_java(mc_version, loader))
        sink.status(f"Ensuring {label} is available...")
        java = self.env.java.ensure_java(label)

        if local_archive is not None:
            sink.status("Extracting modpack...")
            self.expander.expand(local_archive, server_dir,
                                 lambda n: sink.status(f"Extracted {n} files..."))
            self.normalizer.flatten_single_folder(
                server_dir, RUN_SCRIPTS, (*DEFAULT_SIDECARS, local_archive.name))

        sink.status(f"Resolving {loader.value} version for Minecraft {mc_version}...")
        artifact = self.resolver.resolve(loader.software_type(), mc_version, build)
        installer = server_dir / "forge-installer.jar"
        sink.status(f"Downloading {loader.value} installer {artifact.build}...")
        self.downloader.download(artifact.url, installer, sink)

        sink.status(f"Running {loader.value} installer (this may take a while)...")
        self.runner([java, "-jar", installer.name, "--installServer"],
                    server_dir, loader.value, sink.status)

        for leftover in (installer, server_dir / f"{installer.name}.log"):
            if leftover.exists():
                leftover.unlink()
        write_eula(server_dir)
        if loader == Loader.NEOFORGE:
            self.seed_jvm_args(server_dir)
        entrypoint = self.detect_entrypoint(server_dir, loader)
        self.logger.info(f"✅ {loader.value} {artifact.build} installed, entrypoint {entrypoint}")
        return entrypoint

    def install_fabric(self, server_dir: Path, mc_version: str, build: str | None,
                       sink: ProgressSink) -> str:
        artifact = self.resolver.resolve(SoftwareType.FABRIC, mc_version, build)
        sink.status(f"Downloading Fabric server {artifact.build} for {mc_version}...")
        self.downloader.download(artifact.url, server_dir / "server.jar", sink)
        write_eula(server_dir)
        return "server.jar"

    def seed_jvm_args(self, server_dir: Path) -> None:
        p = server_dir / JVM_ARGS_FILE
        if p.exists():
            return
        lines = ["# Put your custom JVM arguments here", *self.env.settings.neoforge_jvm_args]
        p.write_text("\n".join(lines) + "\n", encoding="utf-8")

    @staticmethod
    def detect_entrypoint(server_dir: Path, loader: Loader = Loader.FORGE) -> str:
        for script in RUN_SCRIPTS:
            if (server_dir / script).is_file():
                return script
        prefix = loader.value.lower() + "-"
        jars = sorted(p.name for p in server_dir.glob(f"{prefix}*.jar")
                      if "installer" not in p.name)
        if jars:
            return jars[0]
        return DEFAULT_ENTRYPOINT
