import logging
import sys
from pathlib import Path

import click
import colorlog

from mcsp.__version__ import __version__
from mcsp.core import Environment, TqdmSink
from mcsp.installer import ProvisioningEngine
from mcsp.model import InstallRequest, Settings, SoftwareType
from mcsp.utils import FriendlyException

LOG_FORMATTER = colorlog.ColoredFormatter(
    '%(log_color)s[%(asctime)s][%(name)s/%(levelname)s]: %(message)s',
    datefmt='%H:%M:%S',
    log_colors={
        "DEBUG": "light_cyan",
        "WARNING": "light_yellow",
        "ERROR": "light_red"
    }
)

DEFAULT_SETTINGS_PATHS = ["mcsp.yml", "mcsp.yaml", "mcsp.json", "mcsp.json5", "mcsp.jsonc"]

LISTABLE = ["bedrock", "paper", "purpur", "neoforge", "forge"]


def setup_logging(debug: bool):
    logger = logging.getLogger()  # Root logger
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setFormatter(LOG_FORMATTER)

    # Avoid duplicate handlers if script is reloaded
    logger.handlers.clear()
    logger.addHandler(console_handler)
    # urllib3 connection noise
    logging.getLogger("urllib3").setLevel(logging.INFO)


def select_settings_path(entered: Path | None) -> Path | None:
    if entered is not None:
        return entered
    for n in DEFAULT_SETTINGS_PATHS:
        p = Path(n)
        if p.is_file():
            return p
    return None


def load_settings(entered: Path | None, logger: logging.Logger) -> Settings:
    path = select_settings_path(entered)
    if path is None:
        return Settings()
    logger.debug(f"Using settings from {path}")
    return Settings.load(path, logger)


def report_failure(logger: logging.Logger, e: Exception, debug: bool):
    if isinstance(e, FriendlyException) and not debug:
        logger.error(f"❌ {e}")
    else:
        logger.error("❌ Operation failed", exc_info=e)


@click.group()
@click.version_option(__version__)
def main():
    """Minecraft server provisioner"""
    pass


@main.command(help="Install server software into a folder")
@click.option(
    "--type", "software",
    type=click.Choice([t.value for t in SoftwareType]),
    required=True,
    help="Server software to install",
)
@click.option(
    "--folder",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(""),
    help="Target server folder",
)
@click.option("--version", default="latest", help="Minecraft or Bedrock version")
@click.option("--build", default=None, help="Build, loader version or 'recommended'")
@click.option("--modpack", default=None, help="Modpack archive url or modrinth:<project id>")
@click.option("--mc-version", default=None,
              help="Minecraft version used to install a loader for client modpacks")
@click.option("--spark", is_flag=True, help="Also install spark profiler plugin")
@click.option(
    "--config",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to settings file",
)
@click.option("--debug", is_flag=True, help="Debug logging switch")
def install(software: str, folder: Path, version: str, build: str | None,
            modpack: str | None, mc_version: str | None, spark: bool,
            config: Path | None, debug: bool):
    """Resolves, downloads and prepares server files"""
    setup_logging(debug)
    logger = logging.getLogger("Installer")
    try:
        settings = load_settings(config, logger)
        env = Environment.create(settings, debug)
        env.sink_factory = TqdmSink
        request = InstallRequest(software_type=SoftwareType(software), target_dir=folder,
                                 version=version, build=build, modpack_source_url=modpack,
                                 mc_version=mc_version, install_spark=spark)
    except (ValueError, OSError) as e:
        report_failure(logger, e, debug)
        sys.exit(2)
    engine = ProvisioningEngine(env)
    try:
        outcome = engine.install(request)
    except Exception as e:
        report_failure(logger, e, debug)
        sys.exit(1)
    finally:
        engine.shutdown()
    if outcome.entrypoint is True:
        logger.info(f"✅ Done. Start the server with server.jar in {outcome.target_dir}")
    else:
        logger.info(f"✅ Done. Start the server with {outcome.entrypoint} in {outcome.target_dir}")


@main.command(help="List known versions or builds")
@click.argument("software", type=click.Choice(LISTABLE))
@click.option("--version", "mc_version", default=None,
              help="Minecraft version (required for everything except bedrock)")
@click.option(
    "--config",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to settings file",
)
@click.option("--debug", is_flag=True, help="Debug logging switch")
def versions(software: str, mc_version: str | None, config: Path | None, debug: bool):
    """Prints versions, newest first for bedrock and in upstream order otherwise"""
    setup_logging(debug)
    logger = logging.getLogger("Versions")
    t = SoftwareType(software)
    if t != SoftwareType.BEDROCK and not mc_version:
        raise click.UsageError(f"--version is required for {software}")
    try:
        env = Environment.create(load_settings(config, logger), debug)
    except (ValueError, OSError) as e:
        report_failure(logger, e, debug)
        sys.exit(2)
    engine = ProvisioningEngine(env)
    try:
        if t == SoftwareType.BEDROCK:
            entry = engine.list_bedrock_versions()
            click.echo(f"latest: {entry.latest}")
            ls = entry.versions
        else:
            ls = engine.resolver.list_builds(t, mc_version)  # type: ignore[arg-type]
    except Exception as e:
        report_failure(logger, e, debug)
        sys.exit(1)
    finally:
        engine.shutdown()
    if not ls:
        click.echo("No versions found")
    for v in ls:
        click.echo(v)


@main.command(help="Generate settings schema")
@click.option(
    "--out", "-o",
    type=click.Path(path_type=Path),
    default="settings_schema.json",
    help="Path where to store schema",
)
@click.option(
    "--pretty", "-p",
    is_flag=True,
    help="Indent schema by 2 spaces",
)
def schema(out: Path, pretty: bool):
    """Generates JSON schema for settings and saves it"""
    click.echo(f"Generating schema to {out}")
    out.write_text(Settings.schema_json(pretty), "utf-8")
    click.echo("Done")


if __name__ == "__main__":
    main()
