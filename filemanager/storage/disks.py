# storage/disks.py
"""
Blob stores ("disks") the adapters read and write file bytes through.

Paths passed to a disk are relative to the disk itself, use forward slashes
and never start with a slash. Listings come back in the same form.
"""
import logging
import mimetypes
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError

from ..config import DiskConfig


class Disk(ABC):
    """
    Abstract base class for a blob store.
    Mirrors the subset of a Laravel filesystem disk the adapters rely on.
    """

    supports_temporary_urls: bool = False

    @abstractmethod
    def files(self, directory: str = "") -> List[str]:
        """Lists the files directly inside `directory`."""

    @abstractmethod
    def directories(self, directory: str = "") -> List[str]:
        """Lists the directories directly inside `directory`."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def directory_exists(self, path: str) -> bool:
        pass

    def exists(self, path: str) -> bool:
        """True when `path` is either a file or a directory."""
        return self.file_exists(path) or self.directory_exists(path)

    @abstractmethod
    def make_directory(self, path: str) -> None:
        pass

    @abstractmethod
    def delete_directory(self, path: str) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Deletes a file. Raises FileNotFoundError if it does not exist."""

    @abstractmethod
    def copy(self, source: str, destination: str) -> None:
        pass

    @abstractmethod
    def move(self, source: str, destination: str) -> None:
        pass

    @abstractmethod
    def put(self, path: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        """Writes the stream to `path` and returns the stored path."""

    @abstractmethod
    def get(self, path: str) -> bytes:
        pass

    @abstractmethod
    def read_stream(self, path: str) -> BinaryIO:
        pass

    @abstractmethod
    def size(self, path: str) -> int:
        pass

    @abstractmethod
    def mime_type(self, path: str) -> Optional[str]:
        pass

    @abstractmethod
    def last_modified(self, path: str) -> int:
        pass

    @abstractmethod
    def url(self, path: str) -> str:
        pass

    def temporary_url(self, path: str, expires_at: datetime) -> str:
        raise NotImplementedError("This driver does not support creating temporary URLs.")


class LocalDisk(Disk):
    """Disk backed by a directory on the local filesystem."""

    def __init__(self, root: str, url: Optional[str] = None):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = url

    def _full_path(self, path: str) -> Path:
        full_path = (self.root / path.lstrip("/")).resolve()
        if full_path != self.root and self.root not in full_path.parents:
            raise ValueError(f"Path '{path}' resolves outside of the disk root.")
        return full_path

    def _relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.root).as_posix()

    def files(self, directory: str = "") -> List[str]:
        search_path = self._full_path(directory)
        if not search_path.is_dir():
            return []
        return [self._relative(item) for item in search_path.iterdir() if item.is_file()]

    def directories(self, directory: str = "") -> List[str]:
        search_path = self._full_path(directory)
        if not search_path.is_dir():
            return []
        return [self._relative(item) for item in search_path.iterdir() if item.is_dir()]

    def file_exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def directory_exists(self, path: str) -> bool:
        return self._full_path(path).is_dir()

    def make_directory(self, path: str) -> None:
        self._full_path(path).mkdir(parents=True, exist_ok=True)

    def delete_directory(self, path: str) -> None:
        full_path = self._full_path(path)
        if full_path == self.root:
            raise ValueError("Refusing to delete the disk root.")
        shutil.rmtree(full_path)

    def delete(self, path: str) -> None:
        full_path = self._full_path(path)
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        full_path.unlink()

    def copy(self, source: str, destination: str) -> None:
        target = self._full_path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self._full_path(source), target)

    def move(self, source: str, destination: str) -> None:
        target = self._full_path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self._full_path(source)), str(target))

    def put(self, path: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        target = self._full_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            shutil.copyfileobj(stream, f)
        return self._relative(target)

    def get(self, path: str) -> bytes:
        full_path = self._full_path(path)
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return full_path.read_bytes()

    def read_stream(self, path: str) -> BinaryIO:
        full_path = self._full_path(path)
        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return open(full_path, "rb")

    def size(self, path: str) -> int:
        return self._full_path(path).stat().st_size

    def mime_type(self, path: str) -> Optional[str]:
        mime_type, _ = mimetypes.guess_type(path)
        return mime_type

    def last_modified(self, path: str) -> int:
        return int(self._full_path(path).stat().st_mtime)

    def url(self, path: str) -> str:
        if not self.base_url:
            raise RuntimeError("This disk does not have a public URL configured.")
        return f"{self.base_url.rstrip('/')}/{quote(path.lstrip('/'))}"


class S3Disk(Disk):
    """Disk backed by an S3-compatible bucket (AWS S3, MinIO, Spaces...)."""

    supports_temporary_urls = True

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        prefix: str = "",
        url: Optional[str] = None,
        visibility: str = "private",
        s3_client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.prefix = prefix.strip("/")
        self.base_url = url
        self.visibility = visibility
        self.s3_client = s3_client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=key,
            aws_secret_access_key=secret,
        )
        logging.debug(f"S3 disk initialized. Bucket: {bucket}, endpoint: {endpoint_url}")

    def _key(self, path: str) -> str:
        path = path.strip("/")
        if self.prefix:
            return f"{self.prefix}/{path}" if path else self.prefix
        return path

    def _dir_prefix(self, directory: str) -> str:
        key = self._key(directory)
        return f"{key}/" if key else ""

    def _strip(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + "/"):
            key = key[len(self.prefix) + 1:]
        return key.rstrip("/")

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        return error.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound")

    def _list(self, directory: str):
        paginator = self.s3_client.get_paginator("list_objects_v2")
        return paginator.paginate(
            Bucket=self.bucket, Prefix=self._dir_prefix(directory), Delimiter="/"
        )

    def files(self, directory: str = "") -> List[str]:
        prefix = self._dir_prefix(directory)
        files = []
        for page in self._list(directory):
            for obj in page.get("Contents", []):
                # Directory marker objects end with a slash
                if obj["Key"] == prefix or obj["Key"].endswith("/"):
                    continue
                files.append(self._strip(obj["Key"]))
        return files

    def directories(self, directory: str = "") -> List[str]:
        directories = []
        for page in self._list(directory):
            for common_prefix in page.get("CommonPrefixes", []):
                directories.append(self._strip(common_prefix["Prefix"]))
        return directories

    def file_exists(self, path: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=self._key(path))
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise

    def directory_exists(self, path: str) -> bool:
        prefix = self._dir_prefix(path)
        if not prefix:
            return True
        response = self.s3_client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
        return response.get("KeyCount", 0) > 0

    def make_directory(self, path: str) -> None:
        self.s3_client.put_object(Bucket=self.bucket, Key=self._dir_prefix(path), Body=b"")

    def delete_directory(self, path: str) -> None:
        prefix = self._dir_prefix(path)
        if not prefix:
            raise ValueError("Refusing to delete the bucket root.")
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            # delete_objects accepts at most 1000 keys, which is also the page size
            if objects:
                self.s3_client.delete_objects(Bucket=self.bucket, Delete={"Objects": objects})

    def delete(self, path: str) -> None:
        if not self.file_exists(path):
            raise FileNotFoundError(f"File not found: {path}")
        self.s3_client.delete_object(Bucket=self.bucket, Key=self._key(path))

    def copy(self, source: str, destination: str) -> None:
        self.s3_client.copy_object(
            CopySource={"Bucket": self.bucket, "Key": self._key(source)},
            Bucket=self.bucket,
            Key=self._key(destination),
        )

    def move(self, source: str, destination: str) -> None:
        self.copy(source, destination)
        self.s3_client.delete_object(Bucket=self.bucket, Key=self._key(source))

    def put(self, path: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        extra_args = {}
        if self.visibility == "public":
            extra_args["ACL"] = "public-read"
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=self._key(path),
            Body=stream,
            ContentType=content_type or "application/octet-stream",
            **extra_args,
        )
        return path.strip("/")

    def get(self, path: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=self._key(path))
            return response["Body"].read()
        except ClientError as e:
            if self._is_missing(e):
                raise FileNotFoundError(f"File not found: {path}") from e
            raise

    def read_stream(self, path: str) -> BinaryIO:
        try:
            return self.s3_client.get_object(Bucket=self.bucket, Key=self._key(path))["Body"]
        except ClientError as e:
            if self._is_missing(e):
                raise FileNotFoundError(f"File not found: {path}") from e
            raise

    def _head(self, path: str) -> dict:
        try:
            return self.s3_client.head_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as e:
            if self._is_missing(e):
                raise FileNotFoundError(f"File not found: {path}") from e
            raise

    def size(self, path: str) -> int:
        return int(self._head(path)["ContentLength"])

    def mime_type(self, path: str) -> Optional[str]:
        return self._head(path).get("ContentType")

    def last_modified(self, path: str) -> int:
        return int(self._head(path)["LastModified"].timestamp())

    def url(self, path: str) -> str:
        key = quote(self._key(path))
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def temporary_url(self, path: str, expires_at: datetime) -> str:
        expires_in = int((expires_at - datetime.now(timezone.utc)).total_seconds())
        return self.s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self._key(path)},
            ExpiresIn=max(expires_in, 1),
        )


def make_disk(name: str, disks: Dict[str, DiskConfig]) -> Disk:
    """Builds the disk called `name` from the configured disk registry."""
    config = disks.get(name)
    if config is None:
        raise ValueError(f"Disk '{name}' is not configured.")

    if config.driver == "local":
        return LocalDisk(root=config.root or f"storage/app/{name}", url=config.url)
    if config.driver == "s3":
        if not config.bucket:
            raise ValueError(f"Disk '{name}' uses the s3 driver but has no bucket.")
        return S3Disk(
            bucket=config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
            key=config.key,
            secret=config.secret,
            prefix=config.prefix,
            url=config.url,
            visibility=config.visibility,
        )
    raise ValueError(f"Filesystem driver '{config.driver}' not supported")
