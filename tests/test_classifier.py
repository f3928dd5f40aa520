import pytest

from fakes import make_jar
from mcsp.classifier import ContentClassifier
from mcsp.model import Loader, PackKind


@pytest.fixture
def classifier():
    return ContentClassifier()


def test_starter_outranks_mods(tmp_path, classifier):
    (tmp_path / "run.sh").write_text("java -jar server.jar")
    (tmp_path / "mods").mkdir()
    make_jar(tmp_path / "mods" / "sodium.jar", "fabric.mod.json")
    assert classifier.classify(tmp_path).kind == PackKind.SERVER_PACK


def test_server_jar_means_server_pack(tmp_path, classifier):
    make_jar(tmp_path / "minecraft_server.1.12.2.jar")
    assert classifier.classify(tmp_path).kind == PackKind.SERVER_PACK


def test_libraries_means_installed(tmp_path, classifier):
    (tmp_path / "libraries").mkdir()
    (tmp_path / "mods").mkdir()
    assert classifier.classify(tmp_path).kind == PackKind.SERVER_PACK


def test_no_mods_is_unknown(tmp_path, classifier):
    (tmp_path / "config").mkdir()
    c = classifier.classify(tmp_path)
    assert c.kind == PackKind.UNKNOWN
    assert c.loader is None


@pytest.mark.parametrize("entry,loader", [
    ("fabric.mod.json", Loader.FABRIC),
    ("META-INF/mods.toml", Loader.FORGE),
    ("mcmod.info", Loader.FORGE),
    ("META-INF/neoforge.mods.toml", Loader.NEOFORGE),
])
def test_loader_from_jar_manifest(tmp_path, classifier, entry, loader):
    (tmp_path / "mods").mkdir()
    make_jar(tmp_path / "mods" / "some-mod.jar", entry)
    c = classifier.classify(tmp_path)
    assert c.kind == PackKind.CLIENT_PACK
    assert c.loader == loader


def test_fabric_wins_over_neoforge_in_same_jar(tmp_path, classifier):
    (tmp_path / "mods").mkdir()
    make_jar(tmp_path / "mods" / "multi.jar",
             "META-INF/neoforge.mods.toml", "fabric.mod.json")
    assert classifier.classify(tmp_path).loader == Loader.FABRIC


def test_curseforge_overrides_mods(tmp_path, classifier):
    mods = tmp_path / "overrides" / "mods"
    mods.mkdir(parents=True)
    make_jar(mods / "create.jar", "META-INF/neoforge.mods.toml")
    c = classifier.classify(tmp_path)
    assert c.kind == PackKind.CLIENT_PACK
    assert c.loader == Loader.NEOFORGE


def test_corrupt_jars_are_skipped(tmp_path, classifier):
    mods = tmp_path / "mods"
    mods.mkdir()
    (mods / "aaa-broken.jar").write_bytes(b"not a zip")
    make_jar(mods / "zzz-good.jar", "fabric.mod.json")
    assert classifier.classify(tmp_path).loader == Loader.FABRIC


def test_unrecognized_mods_default_to_forge(tmp_path, classifier):
    mods = tmp_path / "mods"
    mods.mkdir()
    make_jar(mods / "legacy.jar", "com/example/Mod.class")
    (mods / "readme.txt").write_text("hi")
    c = classifier.classify(tmp_path)
    assert c.kind == PackKind.CLIENT_PACK
    assert c.loader == Loader.FORGE
