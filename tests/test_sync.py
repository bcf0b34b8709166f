# tests/test_sync.py
import io

import pytest
from unittest.mock import patch

from filemanager.database_adapter import DatabaseAdapter
from filemanager.exceptions import MaxDepthExceededError
from filemanager.sync import RebuildResult, rebuild_from_disk


@pytest.fixture
def populated_disk(disk):
    disk.put("docs/2024/q1.txt", io.BytesIO(b"q1"))
    disk.put("docs/photo.png", io.BytesIO(b"png"))
    disk.put("readme.txt", io.BytesIO(b"read me"))
    disk.put(".cache/tmp.bin", io.BytesIO(b"x"))
    disk.make_directory("empty")
    return disk


def test_rebuild_imports_folders_and_files(session_factory, populated_disk):
    result = rebuild_from_disk(session_factory, populated_disk)

    assert result == RebuildResult(folders=3, files=3)
    adapter = DatabaseAdapter(session_factory, populated_disk)
    assert [item.name for item in adapter.get_items()] == ["docs", "empty", "readme.txt"]
    photo = [item for item in adapter.get_items("/docs") if item.name == "photo.png"][0]
    assert photo.file_type == "image"
    assert photo.size == 3
    assert photo.storage_path == "docs/photo.png"
    assert adapter.get_contents(photo.identifier) == "png"


def test_rebuild_can_include_hidden_entries(session_factory, populated_disk):
    result = rebuild_from_disk(session_factory, populated_disk, show_hidden=True)

    assert result == RebuildResult(folders=4, files=4)


def test_rebuild_from_subdirectory(session_factory, populated_disk):
    result = rebuild_from_disk(session_factory, populated_disk, root="docs")

    assert result == RebuildResult(folders=1, files=2)
    adapter = DatabaseAdapter(session_factory, populated_disk)
    assert [item.name for item in adapter.get_items()] == ["2024", "photo.png"]


def test_rebuild_replaces_existing_rows(session_factory, populated_disk):
    adapter = DatabaseAdapter(session_factory, populated_disk)
    adapter.create_folder("stale")

    rebuild_from_disk(session_factory, populated_disk)

    assert "stale" not in [item.name for item in adapter.get_items()]


def test_rebuild_rolls_back_on_error(session_factory, populated_disk):
    adapter = DatabaseAdapter(session_factory, populated_disk)
    adapter.create_folder("kept")

    with patch("filemanager.sync.MAX_DEPTH", 1):
        with pytest.raises(MaxDepthExceededError):
            rebuild_from_disk(session_factory, populated_disk)

    assert [item.name for item in adapter.get_items()] == ["kept"]
