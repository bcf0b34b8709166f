# storage_adapter.py
"""
File manager backend that works directly on a disk. No database is used:
identifiers are disk paths and every listing is read from the disk.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, List, Optional, Union

from .context import get_actor
from .exceptions import BackendFailure, MaxDepthExceededError
from .paths import PathResolver
from .storage.base import FileManagerAdapter, free_name, truncate_preview
from .storage.disks import Disk
from .storage.dto import Breadcrumb, FolderNode, StorageItem


class StorageAdapter(FileManagerAdapter):
    """
    Reads and writes files and folders on a disk, confined to `root`.
    Folder renames and moves are a recursive copy followed by a delete,
    since disks have no atomic directory rename.
    """

    MAX_RECURSION_DEPTH = 50

    def __init__(
        self,
        disk: Disk,
        disk_name: str = "public",
        root: str = "",
        show_hidden: bool = False,
        url_expiration: int = 60,
        security=None,
    ):
        self.disk = disk
        self.disk_name = disk_name
        self.resolver = PathResolver(root, disk_name)
        self.root = self.resolver.root
        self.show_hidden = show_hidden
        self.url_expiration = url_expiration
        self.security = security

    def get_mode_name(self) -> str:
        return "storage"

    def _item(self, path: str, is_directory: bool) -> StorageItem:
        return StorageItem.from_path(path, self.disk, self.disk_name, is_directory)

    def _visible(self, path: str) -> bool:
        return self.show_hidden or not PathResolver.is_hidden(PathResolver.basename(path))

    def _is_directory(self, path: str) -> bool:
        if not path:
            return False
        return path in self.disk.directories(PathResolver.parent_of(path))

    def _exists(self, path: str) -> bool:
        return self.disk.file_exists(path) or self._is_directory(path)

    def _user(self):
        return get_actor().user_id

    # --- Reads ---

    def get_items(self, path: Optional[str] = None) -> List[StorageItem]:
        full_path = self.resolver.normalize(path)
        items = []

        try:
            for directory in self.disk.directories(full_path):
                if self._visible(directory):
                    items.append(self._item(directory, True))
            for file in self.disk.files(full_path):
                if self._visible(file):
                    items.append(self._item(file, False))
        except Exception as e:
            logging.warning(f"Failed to list '{full_path}' on disk '{self.disk_name}': {e}")

        return sorted(items, key=lambda item: (item.is_file(), item.name.lower()))

    def get_folders(self, path: Optional[str] = None) -> List[StorageItem]:
        full_path = self.resolver.normalize(path)
        folders = []

        try:
            for directory in self.disk.directories(full_path):
                if self._visible(directory):
                    folders.append(self._item(directory, True))
        except Exception as e:
            logging.warning(f"Failed to list folders in '{full_path}' on disk '{self.disk_name}': {e}")

        return sorted(folders, key=lambda item: item.name.lower())

    def get_item(self, identifier: str) -> Optional[StorageItem]:
        path = self.resolver.normalize(identifier)

        try:
            if self._is_directory(path):
                return self._item(path, True)
            if path and self.disk.file_exists(path):
                return self._item(path, False)
        except Exception as e:
            logging.warning(f"Failed to look up '{path}' on disk '{self.disk_name}': {e}")

        return None

    def get_folder_tree(self) -> List[FolderNode]:
        return self._build_folder_tree(self.root, 0)

    def _build_folder_tree(self, path: str, depth: int) -> List[FolderNode]:
        # Deeper levels are left out instead of failing the whole tree
        if depth >= self.MAX_RECURSION_DEPTH:
            return []

        tree = []
        try:
            for directory in self.disk.directories(path):
                if not self._visible(directory):
                    continue
                display_path = self.resolver.display_path(directory)
                file_count = len([f for f in self.disk.files(directory) if self._visible(f)])
                tree.append(
                    FolderNode(
                        id=display_path or None,
                        name=PathResolver.basename(directory),
                        path="/" + display_path,
                        file_count=file_count,
                        depth=depth,
                        children=self._build_folder_tree(directory, depth + 1),
                    )
                )
        except Exception as e:
            logging.warning(f"Failed to build folder tree under '{path}' on disk '{self.disk_name}': {e}")

        return sorted(tree, key=lambda node: node.name.lower())

    def get_breadcrumbs(self, path: Optional[str] = None) -> List[Breadcrumb]:
        breadcrumbs = [Breadcrumb(id=None, name="Root", path="/")]
        if not path or path == "/":
            return breadcrumbs

        current_path = ""
        for part in PathResolver.sanitize(path).split("/"):
            if not part:
                continue
            current_path += "/" + part
            breadcrumbs.append(Breadcrumb(id=current_path.lstrip("/"), name=part, path=current_path))

        return breadcrumbs

    def exists(self, identifier: str) -> bool:
        path = self.resolver.normalize(identifier)
        try:
            return self._exists(path)
        except Exception as e:
            logging.warning(f"Failed to check '{path}' on disk '{self.disk_name}': {e}")
            return False

    def get_url(self, identifier: str) -> Optional[str]:
        path = self.resolver.normalize(identifier)

        try:
            if self.disk.supports_temporary_urls:
                expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.url_expiration)
                return self.disk.temporary_url(path, expires_at)
            return self.disk.url(path)
        except Exception as e:
            logging.debug(f"Temporary URL failed for '{path}', falling back to a plain URL: {e}")
            try:
                return self.disk.url(path)
            except Exception:
                return None

    def get_contents(self, identifier: str, max_size: int = 1048576) -> Optional[str]:
        path = self.resolver.normalize(identifier)

        try:
            if not self.disk.file_exists(path):
                return None
            # Don't read files far beyond the preview size
            if self.disk.size(path) > max_size * 2:
                return None
            return truncate_preview(self.disk.get(path), max_size)
        except Exception as e:
            logging.warning(f"Failed to read '{path}' on disk '{self.disk_name}': {e}")
            return None

    def get_stream(self, identifier: str) -> Optional[BinaryIO]:
        path = self.resolver.normalize(identifier)

        try:
            if not self.disk.file_exists(path):
                return None
            return self.disk.read_stream(path)
        except Exception as e:
            logging.warning(f"Failed to open '{path}' on disk '{self.disk_name}': {e}")
            return None

    def get_size(self, identifier: str) -> Optional[int]:
        path = self.resolver.normalize(identifier)

        try:
            if not self.disk.file_exists(path):
                return None
            return self.disk.size(path)
        except Exception as e:
            logging.warning(f"Failed to read size of '{path}' on disk '{self.disk_name}': {e}")
            return None

    # --- Mutations ---

    def create_folder(self, name: str, parent_path: Optional[str] = None) -> Union[StorageItem, str]:
        self.resolver.validate_name(name)
        full_parent = self.resolver.normalize(parent_path)
        new_path = PathResolver.join(full_parent, name)

        try:
            if self.disk.exists(new_path) or self._is_directory(new_path):
                return "A folder with this name already exists"

            self.disk.make_directory(new_path)
            logging.info(
                f"FileManager folder created: path='{new_path}', disk='{self.disk_name}', user_id={self._user()}"
            )
            return self._item(new_path, True)
        except Exception as e:
            logging.error(
                f"FileManager failed to create folder: path='{new_path}', disk='{self.disk_name}', "
                f"error='{e}', user_id={self._user()}"
            )
            return f"Failed to create folder: {e}"

    def upload_file(self, file, path: Optional[str] = None) -> Union[StorageItem, str]:
        full_path = self.resolver.normalize(path)

        screened = self._screen_upload(file)
        if screened.error:
            return screened.error
        filename = self.resolver.validate_name(screened.filename)

        try:
            filename = free_name(filename, lambda name: self.disk.exists(PathResolver.join(full_path, name)))
            target_path = PathResolver.join(full_path, filename)
            stored_path = self.disk.put(target_path, screened.stream, content_type=file.content_type)
            logging.info(
                f"FileManager file uploaded: path='{stored_path}', original_name='{file.filename}', "
                f"size={file.size}, mime_type='{file.content_type}', disk='{self.disk_name}', "
                f"user_id={self._user()}"
            )
            return self._item(stored_path, False)
        except Exception as e:
            logging.error(
                f"FileManager failed to upload file: filename='{filename}', path='{full_path}', "
                f"disk='{self.disk_name}', error='{e}', user_id={self._user()}"
            )
            return f"Failed to upload file: {e}"

    def rename(self, identifier: str, new_name: str) -> Union[bool, str]:
        self.resolver.validate_name(new_name)
        old_path = self.resolver.normalize(identifier)
        new_path = PathResolver.join(PathResolver.parent_of(old_path), new_name)

        try:
            if old_path == self.root or not self._exists(old_path):
                return "Item not found"

            if new_path == old_path:
                return True

            if self.disk.exists(new_path):
                return "An item with this name already exists"

            if self._is_directory(old_path):
                self._relocate_directory(old_path, new_path)
            else:
                self.disk.move(old_path, new_path)

            logging.info(
                f"FileManager item renamed: old_path='{old_path}', new_path='{new_path}', "
                f"disk='{self.disk_name}', user_id={self._user()}"
            )
            return True
        except Exception as e:
            logging.error(
                f"FileManager failed to rename item: old_path='{old_path}', new_name='{new_name}', "
                f"disk='{self.disk_name}', error='{e}', user_id={self._user()}"
            )
            return f"Failed to rename: {e}"

    def move(self, identifier: str, new_parent_path: Optional[str] = None) -> Union[bool, str]:
        old_path = self.resolver.normalize(identifier)
        new_parent = self.resolver.normalize(new_parent_path)
        new_path = PathResolver.join(new_parent, PathResolver.basename(old_path))

        try:
            if old_path == self.root or not self._exists(old_path):
                return "Item not found"

            if old_path == new_path:
                return "Item is already in this location"

            if (new_path + "/").startswith(old_path + "/"):
                return "Cannot move a folder into itself"

            if self.disk.exists(new_path):
                return "An item with this name already exists in the destination"

            if new_parent != self.root and not self._is_directory(new_parent):
                return "Target folder not found"

            if self._is_directory(old_path):
                self._relocate_directory(old_path, new_path)
            else:
                self.disk.move(old_path, new_path)

            logging.info(
                f"FileManager item moved: old_path='{old_path}', new_path='{new_path}', "
                f"disk='{self.disk_name}', user_id={self._user()}"
            )
            return True
        except Exception as e:
            logging.error(
                f"FileManager failed to move item: old_path='{old_path}', new_parent='{new_parent_path}', "
                f"disk='{self.disk_name}', error='{e}', user_id={self._user()}"
            )
            return f"Failed to move: {e}"

    def delete(self, identifier: str) -> Union[bool, str]:
        path = self.resolver.normalize(identifier)

        if path == self.root:
            return "Cannot delete the root folder"

        try:
            is_directory = self._is_directory(path)
            if is_directory:
                self.disk.delete_directory(path)
            elif self.disk.file_exists(path):
                self.disk.delete(path)
            else:
                return "Item not found"

            logging.info(
                f"FileManager item deleted: path='{path}', type='{'directory' if is_directory else 'file'}', "
                f"disk='{self.disk_name}', user_id={self._user()}"
            )
            return True
        except Exception as e:
            logging.error(
                f"FileManager failed to delete item: path='{path}', disk='{self.disk_name}', "
                f"error='{e}', user_id={self._user()}"
            )
            return f"Failed to delete: {e}"

    def _relocate_directory(self, old_path: str, new_path: str) -> None:
        """
        Copies `old_path` to `new_path`, then deletes `old_path`.

        A failed copy removes the partial copy and leaves the source untouched.
        A failed delete leaves both trees in place, the new one complete.
        """
        try:
            self._copy_directory(old_path, new_path)
        except Exception:
            self._discard_partial_copy(new_path)
            raise

        try:
            self.disk.delete_directory(old_path)
        except Exception as e:
            raise BackendFailure(
                f"copied to '{new_path}' but could not remove '{old_path}': {e}"
            ) from e

    def _discard_partial_copy(self, path: str) -> None:
        try:
            if self.disk.directory_exists(path):
                self.disk.delete_directory(path)
        except Exception as e:
            logging.warning(
                f"FileManager failed to clean up partial copy: path='{path}', disk='{self.disk_name}', error='{e}'"
            )

    def _copy_directory(self, source: str, destination: str, depth: int = 0) -> None:
        if depth >= self.MAX_RECURSION_DEPTH:
            raise MaxDepthExceededError("Maximum directory depth exceeded during copy operation")

        self.disk.make_directory(destination)

        for file in self.disk.files(source):
            self.disk.copy(file, PathResolver.join(destination, PathResolver.basename(file)))

        for directory in self.disk.directories(source):
            self._copy_directory(
                directory, PathResolver.join(destination, PathResolver.basename(directory)), depth + 1
            )
