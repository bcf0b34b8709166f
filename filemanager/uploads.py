# uploads.py
import io
import mimetypes
import os
from pathlib import Path
from typing import BinaryIO, Optional, Union


class UploadedFile:
    """
    A file handed to `upload_file`: the client-side name plus a readable,
    seekable byte stream.
    """

    def __init__(
        self,
        filename: str,
        stream: BinaryIO,
        content_type: Optional[str] = None,
        size: Optional[int] = None,
    ):
        self.filename = filename
        self.stream = stream
        self.content_type = (
            content_type
            or mimetypes.guess_type(filename)[0]
            or "application/octet-stream"
        )
        self.size = size if size is not None else self._measure()

    @classmethod
    def from_bytes(cls, filename: str, content: bytes, content_type: Optional[str] = None) -> "UploadedFile":
        return cls(filename, io.BytesIO(content), content_type=content_type, size=len(content))

    @classmethod
    def from_path(cls, path: Union[str, Path], filename: Optional[str] = None) -> "UploadedFile":
        """Opens a local file. The caller owns the handle and should close() it."""
        path = Path(path)
        return cls(filename or path.name, open(path, "rb"), size=path.stat().st_size)

    def _measure(self) -> int:
        position = self.stream.tell()
        self.stream.seek(0, os.SEEK_END)
        size = self.stream.tell()
        self.stream.seek(position)
        return size

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def rewind(self) -> None:
        self.stream.seek(0)

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "UploadedFile":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<UploadedFile {self.filename!r} {self.size} bytes {self.content_type}>"
