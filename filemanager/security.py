# security.py
"""
Upload validation. Runs before an adapter stores anything: rejects blocked
and disguised extensions, content that does not match its extension and
malicious names, and returns a sanitized filename for accepted uploads.
"""
import json
import logging
import re
import secrets
import time
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .config import Settings, get_settings
from .context import get_actor
from .storage.dto import format_bytes
from .uploads import UploadedFile

SNIFF_BYTES = 4096

OFFICE_ZIP_MIMES = {
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

OLE_MIMES = {
    "doc": "application/msword",
    "xls": "application/vnd.ms-excel",
    "ppt": "application/vnd.ms-powerpoint",
}

MIME_TYPE_MAP = {
    # Images
    "jpg": ["image/jpeg"],
    "jpeg": ["image/jpeg"],
    "png": ["image/png"],
    "gif": ["image/gif"],
    "webp": ["image/webp"],
    "svg": ["image/svg+xml"],
    "ico": ["image/x-icon", "image/vnd.microsoft.icon"],
    "bmp": ["image/bmp"],
    "tiff": ["image/tiff"],
    "tif": ["image/tiff"],
    # Videos
    "mp4": ["video/mp4"],
    "webm": ["video/webm"],
    "ogg": ["video/ogg", "audio/ogg"],
    "ogv": ["video/ogg"],
    "avi": ["video/x-msvideo"],
    "mov": ["video/quicktime"],
    "wmv": ["video/x-ms-wmv"],
    "mkv": ["video/x-matroska"],
    # Audio
    "mp3": ["audio/mpeg"],
    "wav": ["audio/wav", "audio/x-wav"],
    "oga": ["audio/ogg"],
    "flac": ["audio/flac"],
    "aac": ["audio/aac"],
    "m4a": ["audio/mp4", "audio/x-m4a"],
    # Documents
    "pdf": ["application/pdf"],
    "doc": ["application/msword"],
    "docx": ["application/vnd.openxmlformats-officedocument.wordprocessingml.document"],
    "xls": ["application/vnd.ms-excel"],
    "xlsx": ["application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"],
    "ppt": ["application/vnd.ms-powerpoint"],
    "pptx": ["application/vnd.openxmlformats-officedocument.presentationml.presentation"],
    "txt": ["text/plain"],
    "csv": ["text/csv", "text/plain"],
    "json": ["application/json"],
    "xml": ["application/xml", "text/xml"],
    # Archives
    "zip": ["application/zip"],
    "rar": ["application/x-rar-compressed", "application/vnd.rar"],
    "7z": ["application/x-7z-compressed"],
    "tar": ["application/x-tar"],
    "gz": ["application/gzip"],
}

# (offset, signature, mime type); checked in order
MAGIC_SIGNATURES: List[Tuple[int, bytes, str]] = [
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"%PDF-", "application/pdf"),
    (0, b"II*\x00", "image/tiff"),
    (0, b"MM\x00*", "image/tiff"),
    (0, b"\x00\x00\x01\x00", "image/vnd.microsoft.icon"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"\xff\xfb", "audio/mpeg"),
    (0, b"\xff\xf3", "audio/mpeg"),
    (0, b"fLaC", "audio/flac"),
    (0, b"OggS", "audio/ogg"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"PK\x05\x06", "application/zip"),
    (0, b"Rar!\x1a\x07", "application/x-rar-compressed"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed"),
    (0, b"\x1f\x8b", "application/gzip"),
    (257, b"ustar", "application/x-tar"),
    (0, b"0&\xb2u\x8ef\xcf\x11", "video/x-ms-wmv"),
]

_SVG_RULES = [
    (re.compile(r"<script\b[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL), ""),
    (re.compile(r"\s+on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE), ""),
    (re.compile(r"\s+on\w+\s*=\s*[^\s>]+", re.IGNORECASE), ""),
    (re.compile(r"href\s*=\s*[\"']javascript:[^\"']*[\"']", re.IGNORECASE), 'href="#"'),
    (re.compile(r"xlink:href\s*=\s*[\"']javascript:[^\"']*[\"']", re.IGNORECASE), 'xlink:href="#"'),
    (re.compile(r"href\s*=\s*[\"']data:[^\"']*[\"']", re.IGNORECASE), 'href="#"'),
    (re.compile(r"<foreignObject\b[^>]*>(.*?)</foreignObject>", re.IGNORECASE | re.DOTALL), ""),
    (
        re.compile(r"<use\b[^>]*xlink:href\s*=\s*[\"']https?:[^\"']*[\"']", re.IGNORECASE),
        '<use xlink:href="#"',
    ),
]


def split_filename(filename: str) -> Tuple[str, str]:
    """Splits on the last dot: 'a.tar.gz' -> ('a.tar', 'gz'), '.htaccess' -> ('', 'htaccess')."""
    if "." not in filename:
        return filename, ""
    name, _, extension = filename.rpartition(".")
    return name, extension


class UploadValidation(BaseModel):
    valid: bool
    error: Optional[str] = None
    sanitized_name: Optional[str] = None


class FileSecurityService:
    """
    Validates uploads for security issues.
    Object storage already prevents execution of uploaded files; this
    service adds validation on top of it.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def validate_upload(self, file: UploadedFile) -> UploadValidation:
        original_name = file.filename
        _, extension = split_filename(original_name)
        extension = extension.lower()

        if file.size > self.settings.MAX_UPLOAD_SIZE:
            self._blocked("file too large", original_name, size=file.size)
            return UploadValidation(
                valid=False,
                error=f"File is too large. Maximum size is {format_bytes(self.settings.MAX_UPLOAD_SIZE, 2)}.",
            )

        if self.is_blocked_extension(extension):
            self._blocked("dangerous extension", original_name, extension=extension)
            return UploadValidation(
                valid=False,
                error=f"File type '.{extension}' is not allowed for security reasons.",
            )

        if self.has_double_extension(original_name):
            self._blocked("double extension", original_name)
            return UploadValidation(valid=False, error="Files with multiple extensions are not allowed.")

        if self.settings.VALIDATE_MIME:
            detected_mime = self.detect_mime_type(file)

            if not self.validate_mime_type(extension, detected_mime):
                self._blocked(
                    "MIME type mismatch", original_name, extension=extension, detected_mime=detected_mime
                )
                return UploadValidation(valid=False, error="File content does not match its extension.")

            allowed_mimes = self.settings.ALLOWED_MIMES
            if allowed_mimes and detected_mime not in allowed_mimes:
                self._blocked("disallowed MIME type", original_name, detected_mime=detected_mime)
                return UploadValidation(valid=False, error="File type is not allowed.")

        for pattern in self.settings.BLOCKED_FILENAME_PATTERNS:
            if re.search(pattern, original_name):
                self._blocked("malicious filename pattern", original_name, pattern=pattern)
                return UploadValidation(
                    valid=False, error="Filename contains invalid characters or patterns."
                )

        sanitized_name = self.sanitize_filename(original_name)
        max_length = self.settings.MAX_FILENAME_LENGTH
        if len(sanitized_name) > max_length:
            sanitized_name = self.truncate_filename(sanitized_name, max_length)

        return UploadValidation(valid=True, sanitized_name=sanitized_name)

    def is_blocked_extension(self, extension: str) -> bool:
        blocked = [ext.lower() for ext in self.settings.BLOCKED_EXTENSIONS]
        return extension.lower() in blocked

    def has_double_extension(self, filename: str) -> bool:
        """True for names like `shell.php.jpg`, where an inner part is a blocked extension."""
        parts = filename.split(".")
        if len(parts) <= 2:
            return False
        return any(self.is_blocked_extension(part) for part in parts[1:-1])

    def detect_mime_type(self, file: UploadedFile) -> Optional[str]:
        """Detects the MIME type from the leading bytes instead of trusting the client."""
        file.rewind()
        head = file.read(SNIFF_BYTES)
        file.rewind()

        if not head:
            return "application/x-empty"

        _, extension = split_filename(file.filename)
        extension = extension.lower()
        detected = self._sniff(head, extension)

        # Office documents are zip containers
        if detected in ("application/octet-stream", "application/zip") and extension in OFFICE_ZIP_MIMES:
            if head.startswith(b"PK"):
                return OFFICE_ZIP_MIMES[extension]

        return detected

    @staticmethod
    def _sniff(head: bytes, extension: str) -> str:
        for offset, signature, mime_type in MAGIC_SIGNATURES:
            if head[offset:offset + len(signature)] == signature:
                return mime_type

        # BMP: "BM" followed by the file size and two reserved zero words
        if head[:2] == b"BM" and len(head) >= 14 and head[6:10] == b"\x00\x00\x00\x00":
            return "image/bmp"

        if head[:4] == b"RIFF" and len(head) >= 12:
            return {
                b"WEBP": "image/webp",
                b"WAVE": "audio/x-wav",
                b"AVI ": "video/x-msvideo",
            }.get(head[8:12], "application/octet-stream")

        if head[4:8] == b"ftyp":
            brand = head[8:12]
            if brand.startswith(b"qt"):
                return "video/quicktime"
            if brand.startswith(b"M4A"):
                return "audio/mp4"
            return "video/mp4"

        if head[:4] == b"\x1a\x45\xdf\xa3":
            return "video/webm" if b"webm" in head else "video/x-matroska"

        if head[:8] == b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1":
            return OLE_MIMES.get(extension, "application/x-ole-storage")

        return FileSecurityService._sniff_text(head)

    @staticmethod
    def _sniff_text(head: bytes) -> str:
        if b"\x00" in head:
            return "application/octet-stream"
        try:
            text = head.decode("utf-8")
        except UnicodeDecodeError:
            # A multi-byte character may be cut at the sniff boundary
            try:
                text = head[:-3].decode("utf-8")
            except UnicodeDecodeError:
                return "application/octet-stream"

        stripped = text.lstrip("\ufeff \t\r\n")
        lowered = stripped[:1024].lower()
        if "<svg" in lowered and (lowered.startswith("<?xml") or lowered.startswith("<svg")):
            return "image/svg+xml"
        if lowered.startswith("<?xml"):
            return "text/xml"
        if stripped[:1] in ("{", "["):
            try:
                json.loads(text)
                return "application/json"
            except ValueError:
                pass
        return "text/plain"

    def validate_mime_type(self, extension: str, mime_type: Optional[str]) -> bool:
        if not mime_type:
            return False

        expected_mimes = MIME_TYPE_MAP.get(extension.lower())
        if expected_mimes is None:
            # Unknown extension: only the configured allow-list can accept it
            return mime_type in self.settings.ALLOWED_MIMES

        return mime_type in expected_mimes

    def sanitize_filename(self, filename: str) -> str:
        if not self.settings.SANITIZE_FILENAMES:
            return filename

        name, extension = split_filename(filename)

        name = re.sub(r"[^\w\s\-.]", "", name)
        name = re.sub(r"\s+", "_", name)
        name = re.sub(r"_+", "_", name)
        name = name.strip("_.-")

        if not name:
            name = f"file_{int(time.time())}"

        if self.settings.RENAME_UPLOADS:
            name = f"{secrets.token_hex(4)}_{name}"

        return f"{name}.{extension}" if extension else name

    @staticmethod
    def truncate_filename(filename: str, max_length: int) -> str:
        name, extension = split_filename(filename)
        extension_length = len(extension) + 1 if extension else 0
        max_name_length = max(max_length - extension_length, 1)
        name = name[:max_name_length]
        return f"{name}.{extension}" if extension else name

    def needs_sanitization(self, extension: str) -> bool:
        return extension.lower() in [ext.lower() for ext in self.settings.SANITIZE_EXTENSIONS]

    @staticmethod
    def sanitize_svg(content: str) -> str:
        """Strips scripts, event handlers, javascript:/data: links and foreignObject from SVG markup."""
        for pattern, replacement in _SVG_RULES:
            content = pattern.sub(replacement, content)
        return content

    @staticmethod
    def _blocked(reason: str, filename: str, **details) -> None:
        actor = get_actor()
        extra = ", ".join(f"{key}={value!r}" for key, value in details.items())
        logging.warning(
            f"FileManager blocked file upload: {reason}. filename={filename!r}"
            f"{', ' + extra if extra else ''}, ip={actor.ip}, user_id={actor.user_id}"
        )
