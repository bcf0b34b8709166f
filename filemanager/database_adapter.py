# database_adapter.py
"""
File manager backend that keeps the folder hierarchy in the
file_system_items table and file bytes on a disk.

Mutations run inside a transaction and re-read their target rows with a
write lock before validating, so concurrent requests cannot both rename or
move the same row, or create two siblings with the same name.
"""
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Dict, List, NamedTuple, Optional, Union

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .context import get_actor
from .database.models import FileSystemItem, FileSystemItemType, FileType
from .exceptions import ConflictError, FileManagerError, InvalidHierarchyError, NotFoundError
from .storage.base import FileManagerAdapter, free_name, truncate_preview
from .storage.disks import Disk
from .storage.dto import Breadcrumb, DatabaseItem, FolderNode

FOLDER = FileSystemItemType.FOLDER.value
FILE = FileSystemItemType.FILE.value


class RecordSnapshot(NamedTuple):
    id: int
    name: str
    parent_id: Optional[int]


def _parse_id(identifier) -> Optional[int]:
    if identifier is None:
        return None
    text = str(identifier).strip()
    return int(text) if text.isdigit() else None


def _invalid_name(name: str) -> bool:
    return not name or not name.strip() or "/" in name or "\0" in name or name in (".", "..")


class DatabaseAdapter(FileManagerAdapter):
    """
    Stores folders and files as rows with a self-referencing parent_id.
    Uploaded bytes go to `directory/<uuid>.<ext>` on the disk.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        disk: Disk,
        disk_name: str = "public",
        directory: str = "uploads",
        url_expiration: int = 60,
        security=None,
    ):
        self.session_factory = session_factory
        self.disk = disk
        self.disk_name = disk_name
        self.directory = directory.strip("/")
        self.url_expiration = url_expiration
        self.security = security

    def get_mode_name(self) -> str:
        return "database"

    def _session(self) -> Session:
        return self.session_factory()

    # --- Row helpers ---

    def _get_record(self, session: Session, record_id: int, lock: bool = False) -> Optional[FileSystemItem]:
        stmt = select(FileSystemItem).where(FileSystemItem.id == record_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    def _snapshot(self, record_id: Optional[int]) -> Optional[RecordSnapshot]:
        """Reads a row outside of any write transaction, to compare against later."""
        if record_id is None:
            return None
        with self._session() as session:
            record = self._get_record(session, record_id)
            if record is None:
                return None
            return RecordSnapshot(record.id, record.name, record.parent_id)

    @staticmethod
    def _parent_filter(parent_id: Optional[int]):
        if parent_id is None:
            return FileSystemItem.parent_id.is_(None)
        return FileSystemItem.parent_id == parent_id

    def _sibling_exists(
        self,
        session: Session,
        parent_id: Optional[int],
        name: str,
        exclude_id: Optional[int] = None,
        lock: bool = False,
    ) -> bool:
        stmt = select(FileSystemItem.id).where(self._parent_filter(parent_id), FileSystemItem.name == name)
        if exclude_id is not None:
            stmt = stmt.where(FileSystemItem.id != exclude_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first() is not None

    def path_to_folder_id(self, session: Session, path: Optional[str]) -> Optional[int]:
        """
        Resolves a folder path like `/docs/2024` to a row id, one level at a
        time. Numeric input is taken as an id already. Returns None for the
        root and for paths that do not resolve.
        """
        if path is None or str(path).strip() in ("", "/"):
            return None

        record_id = _parse_id(path)
        if record_id is not None:
            return record_id

        parent_id = None
        for segment in [s for s in str(path).split("/") if s]:
            parent_id = session.scalars(
                select(FileSystemItem.id).where(
                    FileSystemItem.type == FOLDER,
                    self._parent_filter(parent_id),
                    FileSystemItem.name == segment,
                )
            ).first()
            if parent_id is None:
                return None
        return parent_id

    def _resolve_folder(self, session: Session, path: Optional[str], lock: bool = False) -> Optional[int]:
        """Like path_to_folder_id, but an unresolved path is an error instead of the root."""
        if path is None or str(path).strip() in ("", "/"):
            return None

        folder_id = self.path_to_folder_id(session, path)
        folder = self._get_record(session, folder_id, lock=lock) if folder_id is not None else None
        if folder is None or not folder.is_folder():
            raise NotFoundError("Target folder not found")
        return folder.id

    def _discard_blob(self, storage_path: str) -> None:
        try:
            self.disk.delete(storage_path)
        except Exception as e:
            logging.warning(
                f"FileManager failed to delete file from storage: path='{storage_path}', "
                f"disk='{self.disk_name}', error='{e}'"
            )

    def _failed(self, operation: str, error, **context) -> None:
        details = ", ".join(f"{key}={value!r}" for key, value in context.items())
        logging.error(
            f"FileManager failed to {operation}: {details}, error='{error}', user_id={get_actor().user_id}"
        )

    # --- Reads ---

    def get_items(self, path: Optional[str] = None) -> List[DatabaseItem]:
        try:
            with self._session() as session:
                parent_id = self._resolve_folder(session, path)
                records = session.scalars(
                    select(FileSystemItem)
                    .where(self._parent_filter(parent_id))
                    .order_by(case((FileSystemItem.type == FOLDER, 0), else_=1), FileSystemItem.name)
                ).all()
                return [DatabaseItem.from_record(record, session) for record in records]
        except NotFoundError:
            return []
        except Exception as e:
            logging.warning(f"Failed to list items in '{path}': {e}")
            return []

    def get_folders(self, path: Optional[str] = None) -> List[DatabaseItem]:
        try:
            with self._session() as session:
                parent_id = self._resolve_folder(session, path)
                records = session.scalars(
                    select(FileSystemItem)
                    .where(FileSystemItem.type == FOLDER, self._parent_filter(parent_id))
                    .order_by(FileSystemItem.name)
                ).all()
                return [DatabaseItem.from_record(record, session) for record in records]
        except NotFoundError:
            return []
        except Exception as e:
            logging.warning(f"Failed to list folders in '{path}': {e}")
            return []

    def get_item(self, identifier: str) -> Optional[DatabaseItem]:
        record_id = _parse_id(identifier)
        if record_id is None:
            return None

        try:
            with self._session() as session:
                record = self._get_record(session, record_id)
                return DatabaseItem.from_record(record, session) if record else None
        except Exception as e:
            logging.warning(f"Failed to read item '{identifier}': {e}")
            return None

    def get_folder_tree(self) -> List[FolderNode]:
        try:
            with self._session() as session:
                folders = session.scalars(
                    select(FileSystemItem).where(FileSystemItem.type == FOLDER).order_by(FileSystemItem.name)
                ).all()
                file_counts: Dict[Optional[int], int] = dict(
                    session.execute(
                        select(FileSystemItem.parent_id, func.count())
                        .where(FileSystemItem.type != FOLDER)
                        .group_by(FileSystemItem.parent_id)
                    ).all()
                )
        except Exception as e:
            logging.warning(f"Failed to read the folder tree: {e}")
            return []

        children_of = defaultdict(list)
        for folder in folders:
            children_of[folder.parent_id].append(folder)

        def build(parent_id: Optional[int], parent_path: str, depth: int) -> List[FolderNode]:
            nodes = []
            for folder in children_of.get(parent_id, []):
                path = f"{parent_path}/{folder.name}"
                nodes.append(
                    FolderNode(
                        id=folder.id,
                        name=folder.name,
                        path=path,
                        depth=depth,
                        file_count=file_counts.get(folder.id, 0),
                        children=build(folder.id, path, depth + 1),
                    )
                )
            return nodes

        # Only rows reachable from the root are walked, so a corrupted cycle cannot recurse forever
        return build(None, "", 0)

    def get_breadcrumbs(self, path: Optional[str] = None) -> List[Breadcrumb]:
        breadcrumbs = [Breadcrumb(id=None, name="Root", path="/")]

        try:
            with self._session() as session:
                folder_id = self.path_to_folder_id(session, path)
                folder = self._get_record(session, folder_id) if folder_id is not None else None
                if folder is None:
                    return breadcrumbs

                trail = [
                    Breadcrumb(id=ancestor.id, name=ancestor.name, path=ancestor.full_path(session))
                    for ancestor in folder.ancestors(session)
                ]
                trail.append(Breadcrumb(id=folder.id, name=folder.name, path=folder.full_path(session)))
        except Exception as e:
            logging.warning(f"Failed to build breadcrumbs for '{path}': {e}")
            return breadcrumbs

        return breadcrumbs + trail

    def exists(self, identifier: str) -> bool:
        record_id = _parse_id(identifier)
        if record_id is None:
            return False

        try:
            with self._session() as session:
                return self._get_record(session, record_id) is not None
        except Exception as e:
            logging.warning(f"Failed to check existence of '{identifier}': {e}")
            return False

    def _storage_path_of(self, identifier: str) -> Optional[str]:
        record_id = _parse_id(identifier)
        if record_id is None:
            return None

        try:
            with self._session() as session:
                record = self._get_record(session, record_id)
                return record.storage_path if record else None
        except Exception as e:
            logging.warning(f"Failed to look up the storage path of '{identifier}': {e}")
            return None

    def get_url(self, identifier: str) -> Optional[str]:
        storage_path = self._storage_path_of(identifier)
        if not storage_path:
            return None

        try:
            if self.disk.supports_temporary_urls:
                expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.url_expiration)
                return self.disk.temporary_url(storage_path, expires_at)
            return self.disk.url(storage_path)
        except Exception as e:
            logging.debug(f"Temporary URL failed for '{storage_path}', falling back to a plain URL: {e}")
            try:
                return self.disk.url(storage_path)
            except Exception:
                return None

    def get_contents(self, identifier: str, max_size: int = 1048576) -> Optional[str]:
        storage_path = self._storage_path_of(identifier)
        if not storage_path:
            return None

        try:
            return truncate_preview(self.disk.get(storage_path), max_size)
        except Exception as e:
            logging.warning(f"Failed to read '{storage_path}' on disk '{self.disk_name}': {e}")
            return None

    def get_stream(self, identifier: str) -> Optional[BinaryIO]:
        storage_path = self._storage_path_of(identifier)
        if not storage_path:
            return None

        try:
            return self.disk.read_stream(storage_path)
        except Exception as e:
            logging.warning(f"Failed to open '{storage_path}' on disk '{self.disk_name}': {e}")
            return None

    def get_size(self, identifier: str) -> Optional[int]:
        record_id = _parse_id(identifier)
        if record_id is None:
            return None

        try:
            with self._session() as session:
                record = self._get_record(session, record_id)
                if record is None:
                    return None
                size, storage_path = record.size, record.storage_path
        except Exception as e:
            logging.warning(f"Failed to read size of item '{identifier}': {e}")
            return None

        if size is not None:
            return int(size)
        if storage_path:
            try:
                return self.disk.size(storage_path)
            except Exception as e:
                logging.warning(f"Failed to read size of '{storage_path}' on disk '{self.disk_name}': {e}")
        return None

    # --- Mutations ---

    def create_folder(self, name: str, parent_path: Optional[str] = None) -> Union[DatabaseItem, str]:
        if _invalid_name(name):
            return "Invalid folder name"

        try:
            with self._session() as session, session.begin():
                parent_id = self._resolve_folder(session, parent_path, lock=True)
                if self._sibling_exists(session, parent_id, name, lock=True):
                    raise ConflictError("A folder with this name already exists")

                folder = FileSystemItem(name=name, type=FOLDER, parent_id=parent_id)
                session.add(folder)
                session.flush()
                item = DatabaseItem.from_record(folder, session)
        except FileManagerError as e:
            self._failed("create folder", e, name=name, parent_path=parent_path)
            return str(e)
        except IntegrityError as e:
            self._failed("create folder", e, name=name, parent_path=parent_path)
            return "A folder with this name already exists"
        except Exception as e:
            self._failed("create folder", e, name=name, parent_path=parent_path)
            return f"Failed to create folder: {e}"

        logging.info(
            f"FileManager folder created: id={item.record_id}, path='{item.path}', user_id={get_actor().user_id}"
        )
        return item

    def upload_file(self, file, path: Optional[str] = None) -> Union[DatabaseItem, str]:
        screened = self._screen_upload(file)
        if screened.error:
            return screened.error

        name = screened.filename
        if _invalid_name(name):
            return "Invalid file name"
        _, dot, extension = name.rpartition(".")
        if not dot:
            extension = ""

        stored_path = None
        try:
            with self._session() as session, session.begin():
                parent_id = self._resolve_folder(session, path, lock=True)
                name = free_name(
                    name, lambda candidate: self._sibling_exists(session, parent_id, candidate, lock=True)
                )

                blob_name = uuid.uuid4().hex + (f".{extension.lower()}" if extension else "")
                stored_path = self.disk.put(
                    f"{self.directory}/{blob_name}" if self.directory else blob_name,
                    screened.stream,
                    content_type=file.content_type,
                )

                record = FileSystemItem(
                    name=name,
                    type=FILE,
                    file_type=FileType.from_mime_type(file.content_type).value,
                    parent_id=parent_id,
                    size=screened.size,
                    storage_path=stored_path,
                )
                session.add(record)
                session.flush()
                item = DatabaseItem.from_record(record, session)
        except FileManagerError as e:
            self._failed("upload file", e, filename=name, path=path)
            return str(e)
        except IntegrityError as e:
            if stored_path:
                self._discard_blob(stored_path)
            self._failed("upload file", e, filename=name, path=path)
            return "A file with this name already exists"
        except Exception as e:
            # The row was never committed; don't leave its blob behind
            if stored_path:
                self._discard_blob(stored_path)
            self._failed("upload file", e, filename=name, path=path)
            return f"Failed to upload file: {e}"

        logging.info(
            f"FileManager file uploaded: id={item.record_id}, name='{item.name}', storage_path='{stored_path}', "
            f"size={item.size}, mime_type='{file.content_type}', disk='{self.disk_name}', "
            f"user_id={get_actor().user_id}"
        )
        return item

    def rename(self, identifier: str, new_name: str) -> Union[bool, str]:
        try:
            snapshot = self._snapshot(_parse_id(identifier))
            if snapshot is None:
                return "Item not found"
            if _invalid_name(new_name):
                return "Invalid name"

            with self._session() as session, session.begin():
                locked = self._get_record(session, snapshot.id, lock=True)
                if locked is None:
                    raise NotFoundError("Item not found")
                if (locked.name, locked.parent_id) != (snapshot.name, snapshot.parent_id):
                    raise ConflictError("Item was modified by another process")

                if self._sibling_exists(session, locked.parent_id, new_name, exclude_id=locked.id, lock=True):
                    raise ConflictError("An item with this name already exists in this folder")

                locked.name = new_name
        except FileManagerError as e:
            self._failed("rename item", e, identifier=identifier, new_name=new_name)
            return str(e)
        except IntegrityError as e:
            self._failed("rename item", e, identifier=identifier, new_name=new_name)
            return "An item with this name already exists in this folder"
        except Exception as e:
            self._failed("rename item", e, identifier=identifier, new_name=new_name)
            return f"Failed to rename: {e}"

        logging.info(
            f"FileManager item renamed: id={snapshot.id}, old_name='{snapshot.name}', "
            f"new_name='{new_name}', user_id={get_actor().user_id}"
        )
        return True

    def move(self, identifier: str, new_parent_path: Optional[str] = None) -> Union[bool, str]:
        try:
            snapshot = self._snapshot(_parse_id(identifier))
            if snapshot is None:
                return "Item not found"

            with self._session() as session, session.begin():
                locked = self._get_record(session, snapshot.id, lock=True)
                if locked is None:
                    raise NotFoundError("Item not found")
                if (locked.name, locked.parent_id) != (snapshot.name, snapshot.parent_id):
                    raise ConflictError("Item was modified by another process")

                new_parent_id = self._resolve_folder(session, new_parent_path, lock=True)
                if locked.parent_id == new_parent_id:
                    raise ConflictError("Item is already in this folder")

                if locked.is_folder() and new_parent_id is not None:
                    target = self._get_record(session, new_parent_id)
                    chain = [ancestor.id for ancestor in target.ancestors(session)] + [target.id]
                    if locked.id in chain:
                        raise InvalidHierarchyError("Cannot move a folder into itself or its descendants")

                if self._sibling_exists(session, new_parent_id, locked.name, exclude_id=locked.id, lock=True):
                    raise ConflictError("An item with this name already exists in the destination folder")

                locked.parent_id = new_parent_id
        except FileManagerError as e:
            self._failed("move item", e, identifier=identifier, new_parent_path=new_parent_path)
            return str(e)
        except IntegrityError as e:
            self._failed("move item", e, identifier=identifier, new_parent_path=new_parent_path)
            return "An item with this name already exists in the destination folder"
        except Exception as e:
            self._failed("move item", e, identifier=identifier, new_parent_path=new_parent_path)
            return f"Failed to move: {e}"

        logging.info(
            f"FileManager item moved: id={snapshot.id}, old_parent_id={snapshot.parent_id}, "
            f"new_parent_path='{new_parent_path}', user_id={get_actor().user_id}"
        )
        return True

    def delete(self, identifier: str) -> Union[bool, str]:
        """
        Deletes the row, and for folders every descendant row, in one
        transaction. Blobs are removed after the commit; a blob that cannot
        be removed is logged and left behind.
        """
        record_id = _parse_id(identifier)
        if record_id is None:
            return "Item not found"

        try:
            with self._session() as session, session.begin():
                locked = self._get_record(session, record_id, lock=True)
                if locked is None:
                    raise NotFoundError("Item not found")

                ids = [locked.id]
                if locked.is_folder():
                    ids.extend(locked.descendant_ids(session))

                blobs = session.scalars(
                    select(FileSystemItem.storage_path).where(
                        FileSystemItem.id.in_(ids),
                        FileSystemItem.type == FILE,
                        FileSystemItem.storage_path.is_not(None),
                    )
                ).all()
                session.execute(
                    delete(FileSystemItem)
                    .where(FileSystemItem.id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
        except FileManagerError as e:
            self._failed("delete item", e, identifier=identifier)
            return str(e)
        except Exception as e:
            self._failed("delete item", e, identifier=identifier)
            return f"Failed to delete: {e}"

        for storage_path in blobs:
            self._discard_blob(storage_path)

        logging.info(
            f"FileManager item deleted: id={record_id}, rows={len(ids)}, blobs={len(blobs)}, "
            f"user_id={get_actor().user_id}"
        )
        return True
