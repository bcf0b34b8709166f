# tests/test_disks.py
import io
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError
from unittest.mock import MagicMock, patch

from filemanager.config import DiskConfig
from filemanager.storage.disks import LocalDisk, S3Disk, make_disk


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "HeadObject")


# --- LocalDisk ---


def test_local_disk_put_and_read(disk):
    stored = disk.put("docs/a.txt", io.BytesIO(b"hello"))

    assert stored == "docs/a.txt"
    assert disk.file_exists("docs/a.txt")
    assert disk.directory_exists("docs")
    assert disk.get("docs/a.txt") == b"hello"
    assert disk.size("docs/a.txt") == 5
    assert disk.mime_type("docs/a.txt") == "text/plain"
    with disk.read_stream("docs/a.txt") as stream:
        assert stream.read() == b"hello"


def test_local_disk_listing(disk):
    disk.put("a.txt", io.BytesIO(b"a"))
    disk.make_directory("docs/2024")

    assert disk.files() == ["a.txt"]
    assert disk.directories() == ["docs"]
    assert disk.directories("docs") == ["docs/2024"]
    assert disk.files("missing") == []
    assert disk.exists("docs") and disk.exists("a.txt")


def test_local_disk_copy_move_delete(disk):
    disk.put("a.txt", io.BytesIO(b"a"))

    disk.copy("a.txt", "backup/a.txt")
    disk.move("a.txt", "moved/b.txt")
    disk.delete("backup/a.txt")

    assert not disk.file_exists("a.txt")
    assert disk.get("moved/b.txt") == b"a"
    assert not disk.file_exists("backup/a.txt")


def test_local_disk_delete_missing_file_raises(disk):
    with pytest.raises(FileNotFoundError):
        disk.delete("nope.txt")


def test_local_disk_confines_paths_to_root(disk):
    with pytest.raises(ValueError, match="outside of the disk root"):
        disk.get("../escape.txt")


def test_local_disk_refuses_to_delete_root(disk):
    with pytest.raises(ValueError):
        disk.delete_directory("")


def test_local_disk_url(disk, tmp_path):
    assert disk.url("docs/my file.txt") == "/storage/docs/my%20file.txt"
    with pytest.raises(RuntimeError):
        LocalDisk(str(tmp_path / "private")).url("a.txt")
    with pytest.raises(NotImplementedError):
        disk.temporary_url("a.txt", datetime.now(timezone.utc))


# --- S3Disk ---


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def s3_disk(s3_client):
    return S3Disk(bucket="files", prefix="tenant", s3_client=s3_client)


def test_s3_listing_uses_delimiter_and_strips_prefix(s3_disk, s3_client):
    paginator = s3_client.get_paginator.return_value
    paginator.paginate.return_value = [
        {
            "Contents": [{"Key": "tenant/docs/"}, {"Key": "tenant/docs/a.txt"}],
            "CommonPrefixes": [{"Prefix": "tenant/docs/2024/"}],
        }
    ]

    assert s3_disk.files("docs") == ["docs/a.txt"]
    assert s3_disk.directories("docs") == ["docs/2024"]
    paginator.paginate.assert_called_with(Bucket="files", Prefix="tenant/docs/", Delimiter="/")


def test_s3_file_exists(s3_disk, s3_client):
    assert s3_disk.file_exists("a.txt") is True
    s3_client.head_object.assert_called_once_with(Bucket="files", Key="tenant/a.txt")

    s3_client.head_object.side_effect = _client_error("404")
    assert s3_disk.file_exists("a.txt") is False

    s3_client.head_object.side_effect = _client_error("AccessDenied")
    with pytest.raises(ClientError):
        s3_disk.file_exists("a.txt")


def test_s3_put_sets_content_type_and_public_acl(s3_client):
    disk = S3Disk(bucket="files", visibility="public", s3_client=s3_client)
    body = io.BytesIO(b"x")

    assert disk.put("/a.png", body, content_type="image/png") == "a.png"
    s3_client.put_object.assert_called_once_with(
        Bucket="files", Key="a.png", Body=body, ContentType="image/png", ACL="public-read"
    )


def test_s3_delete_directory_deletes_every_page(s3_disk, s3_client):
    s3_client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "tenant/docs/a"}, {"Key": "tenant/docs/b"}]},
        {"Contents": [{"Key": "tenant/docs/c"}]},
    ]

    s3_disk.delete_directory("docs")

    assert s3_client.delete_objects.call_count == 2
    s3_client.delete_objects.assert_called_with(
        Bucket="files", Delete={"Objects": [{"Key": "tenant/docs/c"}]}
    )


def test_s3_get_missing_raises_file_not_found(s3_disk, s3_client):
    s3_client.get_object.side_effect = _client_error("NoSuchKey")

    with pytest.raises(FileNotFoundError):
        s3_disk.get("a.txt")


def test_s3_move_copies_then_deletes(s3_disk, s3_client):
    s3_disk.move("a.txt", "b.txt")

    s3_client.copy_object.assert_called_once_with(
        CopySource={"Bucket": "files", "Key": "tenant/a.txt"}, Bucket="files", Key="tenant/b.txt"
    )
    s3_client.delete_object.assert_called_once_with(Bucket="files", Key="tenant/a.txt")


def test_s3_temporary_url_is_presigned(s3_disk, s3_client):
    s3_client.generate_presigned_url.return_value = "https://signed"

    url = s3_disk.temporary_url("a.txt", datetime.now(timezone.utc) + timedelta(minutes=5))

    assert url == "https://signed"
    _, kwargs = s3_client.generate_presigned_url.call_args
    assert kwargs["Params"] == {"Bucket": "files", "Key": "tenant/a.txt"}
    assert 290 <= kwargs["ExpiresIn"] <= 300


def test_s3_url_prefers_configured_base(s3_client):
    assert S3Disk(bucket="files", url="https://cdn.test", s3_client=s3_client).url("a b") == "https://cdn.test/a%20b"
    assert S3Disk(bucket="files", region="eu-west-1", s3_client=s3_client).url("a") == (
        "https://files.s3.eu-west-1.amazonaws.com/a"
    )


# --- make_disk ---


def test_make_disk_builds_local_disk(tmp_path):
    disk = make_disk("public", {"public": DiskConfig(driver="local", root=str(tmp_path), url="/s")})

    assert isinstance(disk, LocalDisk)
    assert disk.base_url == "/s"


@patch("filemanager.storage.disks.boto3.client")
def test_make_disk_builds_s3_disk(mock_client):
    disk = make_disk(
        "s3", {"s3": DiskConfig(driver="s3", bucket="files", key="k", secret="s", endpoint_url="http://minio:9000")}
    )

    assert isinstance(disk, S3Disk)
    mock_client.assert_called_once_with(
        "s3",
        region_name="us-east-1",
        endpoint_url="http://minio:9000",
        aws_access_key_id="k",
        aws_secret_access_key="s",
    )


def test_make_disk_rejects_unknown_and_incomplete_disks():
    with pytest.raises(ValueError, match="not configured"):
        make_disk("missing", {})
    with pytest.raises(ValueError, match="no bucket"):
        make_disk("s3", {"s3": DiskConfig(driver="s3")})
