# tests/conftest.py
import pytest

from geoipd.config import Settings
from geoipd.manager import DatabaseManager
from geoipd.pipeline import DatabaseFiles, UpdatePipeline

from tests.fakes import EDITION, LICENSE_KEY, URL_TEMPLATE, FakeOpener, FakeRemote


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def files(data_dir):
    return DatabaseFiles(data_dir, EDITION)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def pipeline(files, remote, opener):
    return UpdatePipeline(files, URL_TEMPLATE, fetch=remote, opener=opener)


@pytest.fixture
def manager(pipeline):
    m = DatabaseManager(pipeline, cache_size=16, license_key=LICENSE_KEY)
    yield m
    m.close()


@pytest.fixture
def settings(data_dir):
    return Settings(
        data_dir=data_dir,
        edition=EDITION,
        license_key=LICENSE_KEY,
        download_url=URL_TEMPLATE,
        cache_size=16,
        scheduler_enabled=False,
    )
