# tests/conftest.py
import pytest

from filemanager.config import DiskConfig, Settings, get_settings
from filemanager.database.session import configure_database, create_schema, get_session_maker, reset_engine
from filemanager.database_adapter import DatabaseAdapter
from filemanager.storage.disks import LocalDisk
from filemanager.storage_adapter import StorageAdapter
from filemanager.uploads import UploadedFile


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """
    get_settings() is cached for the whole process. Clear it around every test
    so a Settings instance built from one test's environment never leaks into
    the next.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Real settings whose disks live under the test's temporary directory."""
    return Settings(
        MODE="database",
        DATABASE_URL=f"sqlite:///{tmp_path / 'filemanager.db'}",
        SIGNING_KEY="test-signing-key",
        DISKS={
            "local": DiskConfig(driver="local", root=str(tmp_path / "local")),
            "public": DiskConfig(
                driver="local", root=str(tmp_path / "public"), url="/storage", visibility="public"
            ),
        },
    )


@pytest.fixture
def disk(tmp_path):
    """A LocalDisk rooted in a fresh temporary directory."""
    return LocalDisk(str(tmp_path / "disk"), url="/storage")


@pytest.fixture
def storage_adapter(disk):
    return StorageAdapter(disk, disk_name="public")


@pytest.fixture
def session_factory(tmp_path):
    """
    A file-backed SQLite database, so that separate threads and sessions
    share one database the way separate requests would.
    """
    configure_database(f"sqlite:///{tmp_path / 'test.db'}")
    create_schema()
    yield get_session_maker()
    reset_engine()


@pytest.fixture
def database_adapter(session_factory, disk):
    return DatabaseAdapter(session_factory, disk, disk_name="public", directory="uploads")


@pytest.fixture
def make_upload():
    """Builds an in-memory UploadedFile."""

    def _make(filename="notes.txt", content=b"hello world", content_type=None):
        return UploadedFile.from_bytes(filename, content, content_type=content_type)

    return _make
