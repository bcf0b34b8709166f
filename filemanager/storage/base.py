# storage/base.py
import io
import time
from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Iterable, List, NamedTuple, Optional, Union

from .dto import Breadcrumb, FileManagerItem, FolderNode


class FileManagerAdapter(ABC):
    """
    Abstract base class for a file manager backend.
    Defines the common interface that both backends (database metadata and
    direct disk access) implement, so callers never need to know which one
    is configured.

    Mutating operations return the new item or True on success and a short,
    human readable error string on failure. Read operations return empty
    results or None on failure.
    """

    # Optional FileSecurityService run by upload_file
    security = None

    @abstractmethod
    def get_items(self, path: Optional[str] = None) -> List[FileManagerItem]:
        """
        Lists the direct children of a folder, folders first, then by name.

        :param path: The folder path or identifier. None means the root.
        """
        pass

    @abstractmethod
    def get_folders(self, path: Optional[str] = None) -> List[FileManagerItem]:
        """Lists only the direct child folders, ordered by name."""
        pass

    @abstractmethod
    def get_item(self, identifier: str) -> Optional[FileManagerItem]:
        pass

    @abstractmethod
    def get_folder_tree(self) -> List[FolderNode]:
        """Builds the full folder tree, children ordered by name."""
        pass

    @abstractmethod
    def get_breadcrumbs(self, path: Optional[str] = None) -> List[Breadcrumb]:
        """
        Returns the trail from the root to `path`.
        The first crumb is always Root.
        """
        pass

    @abstractmethod
    def create_folder(self, name: str, parent_path: Optional[str] = None) -> Union[FileManagerItem, str]:
        """
        Creates a folder.

        :param name: The new folder name.
        :param parent_path: The parent folder. None means the root.
        :return: The new folder, or an error message.
        """
        pass

    @abstractmethod
    def upload_file(self, file, path: Optional[str] = None) -> Union[FileManagerItem, str]:
        """
        Stores an uploaded file. A name collision is resolved by appending
        `_<unixtime>` before the extension.

        :param file: An UploadedFile handle.
        :param path: The destination folder. None means the root.
        """
        pass

    @abstractmethod
    def rename(self, identifier: str, new_name: str) -> Union[bool, str]:
        pass

    @abstractmethod
    def move(self, identifier: str, new_parent_path: Optional[str] = None) -> Union[bool, str]:
        """
        Moves an item to a different folder.

        :param identifier: The item to move.
        :param new_parent_path: The destination folder. None means the root.
        """
        pass

    @abstractmethod
    def delete(self, identifier: str) -> Union[bool, str]:
        pass

    def delete_many(self, identifiers: Iterable[str]) -> int:
        """Deletes each item in turn and returns how many were deleted."""
        deleted = 0
        for identifier in identifiers:
            if self.delete(identifier) is True:
                deleted += 1
        return deleted

    @abstractmethod
    def exists(self, identifier: str) -> bool:
        pass

    @abstractmethod
    def get_url(self, identifier: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_contents(self, identifier: str, max_size: int = 1048576) -> Optional[str]:
        """
        Reads a file for preview. Content over `max_size` bytes is cut and
        ends with a truncation marker.
        """
        pass

    @abstractmethod
    def get_stream(self, identifier: str) -> Optional[BinaryIO]:
        pass

    @abstractmethod
    def get_size(self, identifier: str) -> Optional[int]:
        pass

    @abstractmethod
    def get_mode_name(self) -> str:
        pass

    def _screen_upload(self, file) -> "ScreenedUpload":
        """
        Runs the optional FileSecurityService over an upload. Returns the name
        and stream to store, or the validation error.
        """
        if self.security is None:
            file.rewind()
            return ScreenedUpload(None, file.filename, file.stream, file.size)

        validation = self.security.validate_upload(file)
        if not validation.valid:
            return ScreenedUpload(validation.error, None, None, None)

        filename = validation.sanitized_name
        file.rewind()
        extension = filename.rpartition(".")[2] if "." in filename else ""
        if extension and self.security.needs_sanitization(extension):
            content = file.read().decode("utf-8", errors="replace")
            cleaned = self.security.sanitize_svg(content).encode("utf-8")
            return ScreenedUpload(None, filename, io.BytesIO(cleaned), len(cleaned))
        return ScreenedUpload(None, filename, file.stream, file.size)


class ScreenedUpload(NamedTuple):
    error: Optional[str]
    filename: Optional[str]
    stream: Optional[BinaryIO]
    size: Optional[int]


TRUNCATION_MARKER = "\n\n... (truncated, file too large for preview)"


def truncate_preview(content: bytes, max_size: int) -> str:
    if len(content) > max_size:
        return content[:max_size].decode("utf-8", errors="replace") + TRUNCATION_MARKER
    return content.decode("utf-8", errors="replace")


def free_name(filename: str, taken: Callable[[str], bool]) -> str:
    """
    Returns `filename` when it is free, otherwise the first free name of
    name_<unixtime>.ext, name_<unixtime>_1.ext, name_<unixtime>_2.ext, ...
    """
    if not taken(filename):
        return filename

    stem, dot, extension = filename.rpartition(".")
    if not dot:
        stem, extension = filename, ""
    suffix = f".{extension}" if extension else ""
    base = f"{stem}_{int(time.time())}"

    candidate = base + suffix
    counter = 0
    while taken(candidate):
        counter += 1
        candidate = f"{base}_{counter}{suffix}"
    return candidate
