# database/models.py
"""
The file_system_items table: one row per folder or file, linked to its
parent folder through a self-referencing parent_id. Full paths are never
stored, they are computed from the ancestor chain.
"""
import enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

# Guards the ancestor walk against a corrupted (cyclic) parent chain.
MAX_ANCESTOR_DEPTH = 1000


class Base(DeclarativeBase):
    pass


class FileSystemItemType(str, enum.Enum):
    FOLDER = "folder"
    FILE = "file"


class FileType(str, enum.Enum):
    VIDEO = "video"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    OTHER = "other"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "FileType":
        mime_type = mime_type or ""
        if mime_type.startswith("video/"):
            return cls.VIDEO
        if mime_type.startswith("image/"):
            return cls.IMAGE
        if mime_type.startswith("audio/"):
            return cls.AUDIO
        if mime_type in DOCUMENT_MIME_TYPES:
            return cls.DOCUMENT
        return cls.OTHER


DOCUMENT_MIME_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileSystemItem(Base):
    __tablename__ = "file_system_items"
    __table_args__ = (
        UniqueConstraint("parent_id", "name", name="uq_file_system_items_parent_name"),
        # NULL parents never collide in the constraint above. MySQL has no partial indexes.
        Index(
            "uq_file_system_items_root_name",
            "name",
            unique=True,
            sqlite_where=text("parent_id IS NULL"),
            postgresql_where=text("parent_id IS NULL"),
        ).ddl_if(dialect=("postgresql", "sqlite")),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    file_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("file_system_items.id"), nullable=True, index=True
    )
    size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    storage_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<FileSystemItem {self.id}:{self.type}:{self.name}>"

    def is_folder(self) -> bool:
        return self.type == FileSystemItemType.FOLDER.value

    def is_file(self) -> bool:
        return self.type == FileSystemItemType.FILE.value

    def ancestors(self, session: Session) -> List["FileSystemItem"]:
        """Returns the ancestor rows, root first."""
        ancestors: List[FileSystemItem] = []
        parent_id = self.parent_id
        while parent_id is not None and len(ancestors) < MAX_ANCESTOR_DEPTH:
            parent = session.get(FileSystemItem, parent_id)
            if parent is None:
                break
            ancestors.insert(0, parent)
            parent_id = parent.parent_id
        return ancestors

    def full_path(self, session: Session) -> str:
        names = [ancestor.name for ancestor in self.ancestors(session)]
        return "/" + "/".join(names + [self.name])

    def descendant_ids(self, session: Session) -> List[int]:
        """Ids of every row below this one, breadth first."""
        found: List[int] = []
        frontier = [self.id]
        while frontier:
            children = session.scalars(
                select(FileSystemItem.id).where(FileSystemItem.parent_id.in_(frontier))
            ).all()
            found.extend(children)
            frontier = list(children)
        return found

