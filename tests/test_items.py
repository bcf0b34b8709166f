# tests/test_items.py
from datetime import datetime

import pytest
from pydantic import ValidationError
from unittest.mock import MagicMock

from filemanager.database.models import FileSystemItem
from filemanager.storage.disks import Disk
from filemanager.storage.dto import (
    DatabaseItem,
    FolderNode,
    StorageItem,
    format_bytes,
    format_duration,
)


@pytest.mark.parametrize(
    "size, precision, expected",
    [
        (0, 2, "0 B"),
        (512, 2, "512 B"),
        (1536, 2, "1.5 KB"),
        (1048576, 2, "1 MB"),
        (1288490189, 1, "1.2 GB"),
    ],
)
def test_format_bytes(size, precision, expected):
    assert format_bytes(size, precision) == expected


def test_format_duration():
    assert format_duration(5) == "0:05"
    assert format_duration(754) == "12:34"
    assert format_duration(3723) == "1:02:03"


def test_folder_drops_file_only_fields():
    item = StorageItem(
        identifier="docs", name="docs", path="/docs", kind="folder", size=10, duration=3, extension="x"
    )

    assert item.size is None
    assert item.duration is None
    assert item.extension is None
    assert item.formatted_size() == ""


def test_path_must_be_absolute_and_clean():
    with pytest.raises(ValidationError):
        StorageItem(identifier="a", name="a", path="a", kind="file")
    with pytest.raises(ValidationError):
        StorageItem(identifier="a", name="a", path="/x/../a", kind="file")


def test_items_are_immutable():
    item = StorageItem(identifier="a", name="a", path="/a", kind="file")

    with pytest.raises(ValidationError):
        item.name = "b"


def test_storage_item_from_path_reads_disk_metadata():
    disk = MagicMock(spec=Disk)
    disk.file_exists.return_value = True
    disk.size.return_value = 2048
    disk.mime_type.return_value = "image/png"
    disk.last_modified.return_value = 1700000000

    item = StorageItem.from_path("photos/2024/cat.png", disk, "public")

    assert item.identifier == "photos/2024/cat.png"
    assert item.path == "/photos/2024/cat.png"
    assert item.parent_path == "photos/2024"
    assert item.depth == 3
    assert item.extension == "png"
    assert item.size == 2048
    assert item.formatted_size() == "2 KB"
    assert item.is_image() is True
    assert item.is_video() is False


def test_storage_item_tolerates_metadata_errors():
    disk = MagicMock(spec=Disk)
    disk.file_exists.return_value = True
    disk.size.side_effect = RuntimeError("not supported")

    item = StorageItem.from_path("clip.mp4", disk)

    assert item.size is None
    assert item.parent_path is None
    assert item.is_video() is True


def test_storage_item_classifies_by_extension():
    disk = MagicMock(spec=Disk)
    disk.file_exists.return_value = False

    assert StorageItem.from_path("a.flac", disk).is_audio() is True
    assert StorageItem.from_path("a.docx", disk).is_document() is True
    assert StorageItem.from_path("a.bin", disk).is_document() is False


def test_database_item_from_record_resolves_path():
    root = FileSystemItem(id=1, name="docs", type="folder", parent_id=None)
    record = FileSystemItem(
        id=5,
        name="clip.mp4",
        type="file",
        file_type="video",
        parent_id=1,
        size=1536,
        duration=65,
        updated_at=datetime(2024, 1, 1),
    )
    session = MagicMock()
    session.get.side_effect = lambda model, record_id: {1: root}.get(record_id)

    item = DatabaseItem.from_record(record, session)

    assert item.identifier == "5"
    assert item.path == "/docs/clip.mp4"
    assert item.parent_path == "/docs"
    assert item.depth == 1
    assert item.formatted_size() == "1.5 KB"
    assert item.formatted_duration() == "1:05"
    assert item.is_video() is True
    assert item.is_image() is False
    assert item.last_modified == 1704067200


def test_database_item_empty_size_formats_blank():
    item = DatabaseItem(identifier="1", record_id=1, name="a", path="/a", kind="file", size=0)

    assert item.formatted_size() == ""
    assert item.formatted_duration() == ""


def test_to_dict_includes_derived_fields():
    data = StorageItem(identifier="a.mp3", name="a.mp3", path="/a.mp3", kind="file", extension="mp3").to_dict()

    assert data["is_file"] is True
    assert data["is_audio"] is True
    assert data["formatted_size"] == ""


def test_folder_node_nests():
    tree = FolderNode(name="a", path="/a", children=[FolderNode(name="b", path="/a/b", depth=1)])

    assert tree.children[0].depth == 1
    assert tree.model_dump()["children"][0]["name"] == "b"
