# storage/dto.py
import logging
import posixpath
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from ..database.models import FileSystemItem
    from .disks import Disk

_UNITS = ["B", "KB", "MB", "GB", "TB"]

VIDEO_EXTENSIONS = ["mp4", "webm", "mov", "avi", "mkv", "flv", "wmv", "m4v", "ogv"]
IMAGE_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "ico", "tiff", "tif"]
AUDIO_EXTENSIONS = ["mp3", "wav", "ogg", "flac", "aac", "m4a", "wma", "opus"]
DOCUMENT_EXTENSIONS = [
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
    "odt", "ods", "odp", "txt", "rtf", "csv",
    "md", "json", "xml", "yml", "yaml", "html", "css", "js",
]


def format_bytes(size: float, precision: int) -> str:
    unit_index = 0
    while size >= 1024 and unit_index < len(_UNITS) - 1:
        size /= 1024
        unit_index += 1
    number = f"{round(size, precision):.{precision}f}".rstrip("0").rstrip(".")
    return f"{number} {_UNITS[unit_index]}"


def format_duration(duration: int) -> str:
    hours, remainder = divmod(duration, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def _extension_of(name: str) -> Optional[str]:
    _, ext = posixpath.splitext(name)
    return ext[1:] or None


def _timestamp(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite hands back naive datetimes; they are stored as UTC
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class FileManagerItem(BaseModel):
    """
    A standardized, immutable description of one file or folder,
    independent of the backend that produced it.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str
    name: str
    path: str
    parent_path: Optional[str] = None
    kind: Literal["file", "folder"]
    size: Optional[int] = None
    mime_type: Optional[str] = None
    extension: Optional[str] = None
    last_modified: Optional[int] = None
    thumbnail: Optional[str] = None
    duration: Optional[int] = None
    depth: int = 0

    @model_validator(mode="before")
    @classmethod
    def drop_file_only_fields_for_folders(cls, values):
        if isinstance(values, dict) and values.get("kind") == "folder":
            values = dict(values)
            values["size"] = None
            values["duration"] = None
            values["thumbnail"] = None
            values["extension"] = None
        return values

    @field_validator("path")
    @classmethod
    def check_path(cls, path: str) -> str:
        if not path.startswith("/"):
            raise ValueError("Item path must start with '/'")
        if ".." in path.split("/"):
            raise ValueError("Item path must not contain '..' segments")
        return path

    def is_folder(self) -> bool:
        return self.kind == "folder"

    def is_file(self) -> bool:
        return self.kind == "file"

    def formatted_size(self) -> str:
        if self.size is None:
            return ""
        return format_bytes(self.size, 2)

    def formatted_duration(self) -> str:
        if self.duration is None:
            return ""
        return format_duration(self.duration)

    def is_video(self) -> bool:
        return False

    def is_image(self) -> bool:
        return False

    def is_audio(self) -> bool:
        return False

    def is_document(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data.update(
            is_folder=self.is_folder(),
            is_file=self.is_file(),
            formatted_size=self.formatted_size(),
            formatted_duration=self.formatted_duration(),
            is_video=self.is_video(),
            is_image=self.is_image(),
            is_audio=self.is_audio(),
            is_document=self.is_document(),
        )
        return data


class StorageItem(FileManagerItem):
    """An item read straight from a disk listing. The identifier is its disk path."""

    backend: Literal["storage"] = "storage"
    disk: str = "public"
    storage_path: str = ""

    @classmethod
    def from_path(
        cls, path: str, disk: "Disk", disk_name: str = "public", is_directory: bool = False
    ) -> "StorageItem":
        path = path.strip("/")
        name = posixpath.basename(path) or "/"
        parent = posixpath.dirname(path)
        common = dict(
            identifier=path,
            name=name,
            path="/" + path,
            parent_path=parent or None,
            disk=disk_name,
            storage_path=path,
            depth=len([part for part in path.split("/") if part]),
        )

        if is_directory:
            return cls(kind="folder", **common)

        size, mime_type, last_modified = None, None, None
        try:
            if disk.file_exists(path):
                size = disk.size(path)
                mime_type = disk.mime_type(path)
                last_modified = disk.last_modified(path)
        except Exception as e:
            # Some drivers do not support every metadata call
            logging.debug(f"Could not read metadata for '{path}' on disk '{disk_name}': {e}")

        return cls(
            kind="file",
            size=size,
            mime_type=mime_type,
            extension=_extension_of(name),
            last_modified=last_modified,
            **common,
        )

    def _ext(self) -> str:
        return (self.extension or "").lower()

    def is_video(self) -> bool:
        if self.mime_type and self.mime_type.startswith("video/"):
            return True
        return self._ext() in VIDEO_EXTENSIONS

    def is_image(self) -> bool:
        if self.mime_type and self.mime_type.startswith("image/"):
            return True
        return self._ext() in IMAGE_EXTENSIONS

    def is_audio(self) -> bool:
        if self.mime_type and self.mime_type.startswith("audio/"):
            return True
        return self._ext() in AUDIO_EXTENSIONS

    def is_document(self) -> bool:
        return self._ext() in DOCUMENT_EXTENSIONS


class DatabaseItem(FileManagerItem):
    """An item backed by a row of the file_system_items table. The identifier is the row id."""

    backend: Literal["database"] = "database"
    record_id: int
    parent_id: Optional[int] = None
    file_type: Optional[str] = None
    storage_path: Optional[str] = None

    @classmethod
    def from_record(cls, record: "FileSystemItem", session: "Session") -> "DatabaseItem":
        """
        Snapshots a row. The ancestor chain is resolved once here, so the item
        stays usable after the session is closed.
        """
        ancestors = record.ancestors(session)
        parent_names = [ancestor.name for ancestor in ancestors]
        is_folder = record.type == "folder"

        return cls(
            identifier=str(record.id),
            record_id=record.id,
            name=record.name,
            path="/" + "/".join(parent_names + [record.name]),
            parent_path=("/" + "/".join(parent_names)) if record.parent_id else None,
            parent_id=record.parent_id,
            kind="folder" if is_folder else "file",
            size=record.size,
            extension=None if is_folder else _extension_of(record.name),
            last_modified=_timestamp(record.updated_at),
            thumbnail=record.thumbnail,
            duration=record.duration,
            depth=len(ancestors),
            file_type=record.file_type,
            storage_path=record.storage_path,
        )

    def formatted_size(self) -> str:
        if not self.size:
            return ""
        return format_bytes(self.size, 1)

    def formatted_duration(self) -> str:
        if not self.duration:
            return ""
        return format_duration(self.duration)

    def is_video(self) -> bool:
        return self.is_file() and self.file_type == "video"

    def is_image(self) -> bool:
        return self.is_file() and self.file_type == "image"

    def is_audio(self) -> bool:
        return self.is_file() and self.file_type == "audio"

    def is_document(self) -> bool:
        return self.is_file() and self.file_type == "document"


class FolderNode(BaseModel):
    """One folder of the sidebar tree."""

    id: Optional[Union[int, str]] = None
    name: str
    path: str
    file_count: int = 0
    depth: int = 0
    children: List["FolderNode"] = Field(default_factory=list)


class Breadcrumb(BaseModel):
    id: Optional[Union[int, str]] = None
    name: str
    path: str


FolderNode.model_rebuild()
