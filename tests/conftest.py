import pytest

from fakes import StaticJava
from mcsp.core import Environment
from mcsp.model import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(download_retries=0)


@pytest.fixture
def java() -> StaticJava:
    return StaticJava()


@pytest.fixture
def env(settings: Settings, java: StaticJava) -> Environment:
    return Environment(settings, java)
