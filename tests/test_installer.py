import hashlib
import os
import threading
from pathlib import Path

import pytest

from fakes import make_jar, make_zip
from mcsp.core import CollectingSink
from mcsp.errors import DownloadFailed, DownloadIntegrityFailure, ProvisioningError
from mcsp.installer import SPARK_URL, InstallContext, ProvisioningEngine
from mcsp.model import (InstallRequest, InstallStage, Loader, PackKind,
                        ResolvedArtifact, SoftwareType)
from mcsp.providers.api.bedrock import download_url


class FakeDownloader:
    """Serves files from a url -> bytes/Path map"""

    def __init__(self, files: dict[str, bytes | Path]) -> None:
        self.files = files
        self.urls: list[str] = []
        self.gate: threading.Event | None = None

    def download(self, url, dest: Path, sink=None):
        self.urls.append(url)
        if self.gate is not None:
            self.gate.wait(5)
        if url not in self.files:
            raise DownloadFailed(url, "HTTP 404")
        data = self.files[url]
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data.read_bytes() if isinstance(data, Path) else data)
        return dest


class FakeResolver:
    def __init__(self, artifacts: dict[SoftwareType, ResolvedArtifact] | None = None,
                 modpacks: dict[str, str] | None = None) -> None:
        self.artifacts = artifacts or {}
        self.modpacks = modpacks or {}

    def resolve(self, software, version, build=None):
        return self.artifacts[software]

    def resolve_bedrock(self, version, windows=None):
        return ResolvedArtifact(url=download_url(version, bool(windows)), version=version,
                                file_name="bedrock.zip")

    def list_bedrock_versions(self, sink=None):
        raise AssertionError("explicit version must not trigger scraping")

    def latest_release(self):
        return "1.21.4"

    def resolve_modpack_url(self, source):
        return self.modpacks.get(source, source), None


class FakeLoaders:
    def __init__(self) -> None:
        self.calls = []

    def install_loader(self, server_dir, loader, mc_version, build=None,
                       local_archive=None, sink=None):
        self.calls.append((loader, mc_version, local_archive))
        return "run.bat"


@pytest.fixture
def make_engine(env):
    engines = []

    def factory(files, resolver=None) -> ProvisioningEngine:
        e = ProvisioningEngine(env, resolver or FakeResolver(), FakeDownloader(files))  # type: ignore[arg-type]
        e.windows = False
        engines.append(e)
        return e
    yield factory
    for e in engines:
        e.shutdown()


@pytest.mark.skipif(os.name == "nt", reason="posix permissions")
def test_bedrock_end_to_end(tmp_path, make_engine):
    version = "1.21.11.01"
    archive = make_zip(tmp_path / "src.zip", {
        f"bedrock-server-{version}/bedrock_server": b"\x7fELF",
        f"bedrock-server-{version}/server.properties": "server-name=Dedicated Server",
        f"bedrock-server-{version}/behavior_packs/vanilla/manifest.json": "{}",
    })
    target = tmp_path / "srv"
    engine = make_engine({download_url(version, False): archive})
    sink = CollectingSink()
    outcome = engine.install(InstallRequest(software_type=SoftwareType.BEDROCK,
                                            target_dir=target, version=version), sink)

    exe = target / "bedrock_server"
    assert outcome.entrypoint == "bedrock_server"
    assert exe.is_file()
    assert exe.stat().st_mode & 0o777 == 0o755
    assert (target / "eula.txt").read_text() == "eula=true"
    assert (target / "behavior_packs" / "vanilla" / "manifest.json").exists()
    assert not (target / f"bedrock-server-{version}").exists()
    assert not (target / "bedrock.zip").exists()
    assert sink.statuses[-1] == "Installation complete"


def test_bedrock_failure_names_manual_upload(tmp_path, make_engine):
    engine = make_engine({})
    with pytest.raises(ProvisioningError) as ei:
        engine.install(InstallRequest(software_type=SoftwareType.BEDROCK,
                                      target_dir=tmp_path, version="1.21.11.01"))
    msg = str(ei.value)
    assert "manually" in msg and "bedrock_server" in msg
    assert ei.value.context["software"] == "bedrock"
    assert ei.value.context["stage"] == "DOWNLOADING"


def test_paper_with_spark(tmp_path, make_engine):
    resolver = FakeResolver({SoftwareType.PAPER: ResolvedArtifact(
        url="https://fill.example/paper-130.jar", version="1.21.1", build="130")})
    engine = make_engine({"https://fill.example/paper-130.jar": b"paper",
                          SPARK_URL: b"spark"}, resolver)
    outcome = engine.install(InstallRequest(software_type=SoftwareType.PAPER, target_dir=tmp_path,
                                            version="1.21.1", install_spark=True))
    assert outcome.entrypoint is True
    assert outcome.build == "130"
    assert (tmp_path / "server.jar").read_bytes() == b"paper"
    assert (tmp_path / "plugins" / "spark.jar").read_bytes() == b"spark"
    assert engine.install_spark(tmp_path) is False


def test_spark_is_ignored_for_vanilla(tmp_path, make_engine):
    data = b"vanilla"
    resolver = FakeResolver({SoftwareType.VANILLA: ResolvedArtifact(
        url="https://mojang.example/server.jar", version="1.21.1",
        sha1=hashlib.sha1(data).hexdigest())})
    engine = make_engine({"https://mojang.example/server.jar": data}, resolver)
    engine.install(InstallRequest(software_type=SoftwareType.VANILLA, target_dir=tmp_path,
                                  install_spark=True))
    assert not (tmp_path / "plugins").exists()


def test_vanilla_checksum_mismatch(tmp_path, make_engine):
    resolver = FakeResolver({SoftwareType.VANILLA: ResolvedArtifact(
        url="https://mojang.example/server.jar", version="1.21.1", sha1="00" * 20)})
    engine = make_engine({"https://mojang.example/server.jar": b"tampered"}, resolver)
    with pytest.raises(DownloadIntegrityFailure):
        engine.install(InstallRequest(software_type=SoftwareType.VANILLA, target_dir=tmp_path))
    assert not (tmp_path / "server.jar").exists()


def test_spigot_without_mirror(tmp_path, make_engine):
    resolver = FakeResolver({SoftwareType.SPIGOT: ResolvedArtifact(
        url="https://download.getspigot.org/spigot/spigot-1.0.jar", version="1.0")})
    engine = make_engine({}, resolver)
    with pytest.raises(ProvisioningError, match="No mirror found"):
        engine.install(InstallRequest(software_type=SoftwareType.SPIGOT, target_dir=tmp_path,
                                      version="1.0"))


def test_client_modpack_installs_loader(tmp_path, make_engine):
    jar = make_jar(tmp_path / "sodium.jar", "fabric.mod.json")
    pack = make_zip(tmp_path / "pack.zip", {
        "manifest.json": "{}",
        "overrides/mods/sodium.jar": jar.read_bytes(),
        "overrides/config/sodium.json": "{}",
    })
    engine = make_engine({"https://cdn.example/pack.zip": pack},
                         FakeResolver(modpacks={"modrinth:abc": "https://cdn.example/pack.zip"}))
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    target = tmp_path / "srv"
    sink = CollectingSink()
    outcome = engine.install(InstallRequest(
        software_type=SoftwareType.MODPACK_ZIP, target_dir=target,
        modpack_source_url="modrinth:abc", mc_version="1.21.1"), sink)

    assert outcome.classification is not None
    assert outcome.classification.kind == PackKind.CLIENT_PACK
    assert outcome.classification.loader == Loader.FABRIC
    assert outcome.entrypoint == "run.bat"
    assert engine.loaders.calls == [(Loader.FABRIC, "1.21.1", None)]  # type: ignore[attr-defined]
    assert (target / "mods" / "sodium.jar").exists()
    assert (target / "config" / "sodium.json").exists()
    assert not (target / "overrides").exists()
    assert not (target / "temp_extract").exists()
    assert not (target / "modpack.zip").exists()
    assert (target / "eula.txt").read_text() == "eula=true"


def test_client_modpack_without_mc_version_warns(tmp_path, make_engine):
    jar = make_jar(tmp_path / "x.jar", "META-INF/mods.toml")
    pack = make_zip(tmp_path / "pack.zip", {"mods/x.jar": jar.read_bytes()})
    engine = make_engine({"https://cdn.example/pack.zip": pack})
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    sink = CollectingSink()
    engine.install(InstallRequest(software_type=SoftwareType.MODPACK_ZIP, target_dir=tmp_path / "srv",
                                  modpack_source_url="https://cdn.example/pack.zip"), sink)
    assert engine.loaders.calls == []  # type: ignore[attr-defined]
    assert any(s.startswith("Warning") and "Forge" in s for s in sink.statuses)


def test_client_modpack_with_only_mods_folder(tmp_path, make_engine):
    sodium = make_jar(tmp_path / "sodium.jar", "fabric.mod.json")
    lithium = make_jar(tmp_path / "lithium.jar", "fabric.mod.json")
    pack = make_zip(tmp_path / "pack.zip", {
        "mods/sodium.jar": sodium.read_bytes(),
        "mods/lithium.jar": lithium.read_bytes(),
    })
    engine = make_engine({"https://cdn.example/pack.zip": pack})
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    target = tmp_path / "srv"
    outcome = engine.install(InstallRequest(
        software_type=SoftwareType.MODPACK_ZIP, target_dir=target,
        modpack_source_url="https://cdn.example/pack.zip", mc_version="1.21.1"))

    assert outcome.classification is not None
    assert outcome.classification.kind == PackKind.CLIENT_PACK
    assert engine.loaders.calls == [(Loader.FABRIC, "1.21.1", None)]  # type: ignore[attr-defined]
    assert (target / "mods" / "sodium.jar").exists()
    assert (target / "mods" / "lithium.jar").exists()
    assert not (target / "sodium.jar").exists()


def test_server_modpack_in_nested_folder(tmp_path, make_engine):
    pack = make_zip(tmp_path / "pack.zip", {
        "ATM9 Server/startserver.sh": "",
        "ATM9 Server/run.sh": "",
        "ATM9 Server/mods/a.jar": b"",
    })
    engine = make_engine({"https://cdn.example/pack.zip": pack})
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    target = tmp_path / "srv"
    outcome = engine.install(InstallRequest(software_type=SoftwareType.MODPACK_ZIP, target_dir=target,
                                            modpack_source_url="https://cdn.example/pack.zip"))
    assert outcome.classification is not None
    assert outcome.classification.kind == PackKind.SERVER_PACK
    assert outcome.entrypoint == "run.sh"
    assert (target / "mods" / "a.jar").exists()
    assert engine.loaders.calls == []  # type: ignore[attr-defined]


def test_failed_modpack_cleans_scratch_but_keeps_target(tmp_path, make_engine):
    target = tmp_path / "srv"
    target.mkdir()
    (target / "world").mkdir()
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"<html>403</html>")
    engine = make_engine({"https://cdn.example/pack.zip": bad})
    sink = CollectingSink()
    with pytest.raises(DownloadIntegrityFailure) as ei:
        engine.install(InstallRequest(software_type=SoftwareType.MODPACK_ZIP, target_dir=target,
                                      modpack_source_url="https://cdn.example/pack.zip"), sink)
    assert ei.value.context["software"] == "modpack"
    assert ei.value.context["stage"] == "EXTRACTING"
    assert (target / "world").is_dir()
    assert not (target / "temp_extract").exists()
    assert not (target / "modpack.zip").exists()
    assert sink.statuses[-1].startswith("Installation failed")


def test_forge_with_modpack_passes_archive(tmp_path, make_engine):
    pack = make_zip(tmp_path / "pack.zip", {"mods/a.jar": b""})
    engine = make_engine({"https://cdn.example/pack.zip": pack})
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    target = tmp_path / "srv"
    outcome = engine.install(InstallRequest(software_type=SoftwareType.FORGE, target_dir=target,
                                            version="1.20.1",
                                            modpack_source_url="https://cdn.example/pack.zip"))
    assert outcome.entrypoint == "run.bat"
    loader, mc, archive = engine.loaders.calls[0]  # type: ignore[attr-defined]
    assert (loader, mc) == (Loader.FORGE, "1.20.1")
    assert archive == target.resolve() / "modpack.zip"
    assert not (target / "modpack.zip").exists()


def test_forge_default_version_uses_latest_release(tmp_path, make_engine):
    engine = make_engine({})
    engine.loaders = FakeLoaders()  # type: ignore[assignment]
    outcome = engine.install(InstallRequest(software_type=SoftwareType.FORGE,
                                            target_dir=tmp_path / "srv"))
    assert engine.loaders.calls == [(Loader.FORGE, "1.21.4", None)]  # type: ignore[attr-defined]
    assert outcome.version == "1.21.4"


def test_stage_sequence_is_recorded(tmp_path, make_engine, monkeypatch):
    seen = []
    real_enter = InstallContext.enter

    def spy(self, stage, message=None):
        seen.append(stage)
        return real_enter(self, stage, message)
    monkeypatch.setattr("mcsp.installer.InstallContext.enter", spy)
    resolver = FakeResolver({SoftwareType.FABRIC: ResolvedArtifact(
        url="https://meta.example/server.jar", version="1.21.1", build="0.16.5")})
    engine = make_engine({"https://meta.example/server.jar": b"fabric"}, resolver)
    engine.install(InstallRequest(software_type=SoftwareType.FABRIC, target_dir=tmp_path))
    assert seen == [InstallStage.RESOLVING, InstallStage.DOWNLOADING,
                    InstallStage.FINALIZING, InstallStage.COMPLETE]


def test_concurrent_install_into_same_folder_is_refused(tmp_path, make_engine):
    resolver = FakeResolver({SoftwareType.PAPER: ResolvedArtifact(
        url="https://fill.example/paper.jar", version="1.21.1")})
    engine = make_engine({"https://fill.example/paper.jar": b"paper"}, resolver)
    gate = threading.Event()
    engine.downloader.gate = gate  # type: ignore[attr-defined]
    req = InstallRequest(software_type=SoftwareType.PAPER, target_dir=tmp_path / "a")
    first = engine.submit(req)
    with pytest.raises(ProvisioningError, match="already running"):
        engine.submit(req)
    other = engine.submit(InstallRequest(software_type=SoftwareType.PAPER, target_dir=tmp_path / "b"))
    gate.set()
    assert first.result(timeout=10).entrypoint is True
    assert other.result(timeout=10).target_dir == (tmp_path / "b").resolve()
    # released after completion
    engine.submit(req).result(timeout=10)
