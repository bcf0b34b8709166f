# sync.py
"""
Rebuilds the file_system_items table from the contents of a disk, for
switching an existing storage-mode tree over to database mode.
"""
import logging
from typing import NamedTuple, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from .database.models import FileSystemItem, FileSystemItemType, FileType
from .exceptions import MaxDepthExceededError
from .paths import PathResolver
from .storage.disks import Disk

MAX_DEPTH = 50


class RebuildResult(NamedTuple):
    folders: int
    files: int


def rebuild_from_disk(
    session_factory: sessionmaker, disk: Disk, root: str = "", show_hidden: bool = False
) -> RebuildResult:
    """
    Replaces every row with one per folder and file found under `root`.
    Existing blobs are referenced in place, nothing is copied. Runs in a
    single transaction: on any error the table is left as it was.
    """
    root = PathResolver.sanitize(root or "")
    counts = {"folders": 0, "files": 0}

    def visible(path: str) -> bool:
        return show_hidden or not PathResolver.is_hidden(PathResolver.basename(path))

    def scan(session: Session, directory: str, parent_id: Optional[int], depth: int) -> None:
        if depth >= MAX_DEPTH:
            raise MaxDepthExceededError(f"Maximum directory depth exceeded at '{directory}'")

        for path in sorted(filter(visible, disk.directories(directory))):
            folder = FileSystemItem(
                name=PathResolver.basename(path), type=FileSystemItemType.FOLDER.value, parent_id=parent_id
            )
            session.add(folder)
            session.flush()
            counts["folders"] += 1
            scan(session, path, folder.id, depth + 1)

        for path in sorted(filter(visible, disk.files(directory))):
            session.add(
                FileSystemItem(
                    name=PathResolver.basename(path),
                    type=FileSystemItemType.FILE.value,
                    file_type=FileType.from_mime_type(disk.mime_type(path)).value,
                    parent_id=parent_id,
                    size=disk.size(path),
                    storage_path=path,
                )
            )
            counts["files"] += 1

    logging.info(f"Rebuilding file system items from disk, root='{root or '/'}'")
    with session_factory() as session, session.begin():
        session.execute(delete(FileSystemItem))
        scan(session, root, None, 0)

    result = RebuildResult(**counts)
    logging.info(f"Rebuild finished: {result.folders} folders, {result.files} files")
    return result
