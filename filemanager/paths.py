# paths.py
import logging
import posixpath
import re
from typing import Optional
from urllib.parse import unquote

from .context import get_actor
from .exceptions import PathTraversalError

_DOTS_ONLY = re.compile(r"^\.{2,}$")
_TRIM_CHARS = " \t\n\r\0\x0b/\\"


class PathResolver:
    """
    Turns user-supplied paths into disk paths confined to a configured root.

    Every path returned by `normalize` is relative to the disk, starts with
    the root (when one is configured) and contains no `.` or `..` segments.
    """

    def __init__(self, root: str = "", disk: str = "public"):
        self.root = (root or "").strip().strip("/")
        self.disk = disk

    def normalize(self, path: Optional[str]) -> str:
        """
        Sanitizes `path` and anchors it under the root.

        :raises PathTraversalError: if the result would escape the root.
        """
        if path is None or path == "" or path == "/":
            return self.root

        clean = self.sanitize(path)

        if self.root:
            # Identifiers handed back to us are already rooted; don't prefix twice.
            if clean == self.root or clean.startswith(self.root + "/"):
                self.validate_within_root(clean)
                return clean
            full_path = f"{self.root}/{clean}" if clean else self.root
        else:
            full_path = clean

        self.validate_within_root(full_path)
        return full_path

    @staticmethod
    def sanitize(path: str) -> str:
        """Strips traversal segments, null bytes and encoding tricks from a path."""
        path = path.strip(_TRIM_CHARS)
        path = unquote(path)
        path = path.replace("\0", "")
        path = path.replace("\\", "/")

        safe_parts = []
        for part in path.split("/"):
            if part == "" or part == ".":
                continue
            if _DOTS_ONLY.match(part):
                continue
            safe_parts.append(part)

        return "/".join(safe_parts)

    def validate_within_root(self, path: str) -> None:
        if not self.root:
            return

        normalized = path.rstrip("/")
        after_root = normalized[len(self.root):]
        if not normalized.startswith(self.root) or (after_root and not after_root.startswith("/")):
            self._report_traversal(path)
            raise PathTraversalError("Path traversal attempt detected")

    def validate_name(self, name: str) -> str:
        """
        Checks a single path segment (a new folder or file name).

        :raises PathTraversalError: if the name contains separators or is a dot segment.
        """
        if (
            "/" in name
            or "\\" in name
            or "\0" in name
            or name in (".", "..")
            or _DOTS_ONLY.match(name)
        ):
            self._report_traversal(name)
            raise PathTraversalError("Path traversal attempt detected")
        return name

    def is_path_safe(self, path: str) -> bool:
        try:
            self.normalize(path)
            return True
        except PathTraversalError:
            return False

    def display_path(self, full_path: str) -> str:
        """Returns the path relative to the root, without a leading slash."""
        if self.root and (full_path == self.root or full_path.startswith(self.root + "/")):
            return full_path[len(self.root):].lstrip("/")
        return full_path

    @staticmethod
    def join(parent: str, name: str) -> str:
        return f"{parent.rstrip('/')}/{name}" if parent else name

    @staticmethod
    def parent_of(path: str) -> str:
        return posixpath.dirname(path.rstrip("/"))

    @staticmethod
    def basename(path: str) -> str:
        return posixpath.basename(path.rstrip("/"))

    @staticmethod
    def is_hidden(name: str) -> bool:
        return name.startswith(".")

    def _report_traversal(self, attempted: str) -> None:
        actor = get_actor()
        logging.warning(
            f"FileManager path traversal attempt detected: attempted_path='{attempted}', "
            f"root='{self.root}', disk='{self.disk}', ip={actor.ip}, user_id={actor.user_id}"
        )
