# urls.py
"""
URL generation for previews and downloads.

The strategy depends on the disk:
- S3-compatible disks: a temporary (pre-signed) URL from the disk itself
- Public disks: the disk's direct URL
- Anything else: a signed, expiring URL to the host application's stream endpoint
"""
import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .config import DiskConfig, Settings, get_settings
from .storage.disks import Disk, make_disk

TEMPORARY_URL = "temporary_url"
PUBLIC_URL = "public_url"
SIGNED_ROUTE = "signed_route"


class UrlSigner:
    """Signs URLs with an `expires` timestamp and an HMAC-SHA256 `signature` parameter."""

    def __init__(self, key: str):
        self.key = key.encode("utf-8")

    def _signature(self, unsigned_url: str) -> str:
        return hmac.new(self.key, unsigned_url.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, base_url: str, params: Dict[str, str], expires_at: datetime) -> str:
        query = [(key, str(value)) for key, value in params.items() if value is not None]
        query.append(("expires", str(int(expires_at.timestamp()))))
        unsigned_url = f"{base_url}?{urlencode(query)}"
        return f"{unsigned_url}&{urlencode({'signature': self._signature(unsigned_url)})}"

    def verify(self, url: str, now: Optional[float] = None) -> bool:
        parts = urlsplit(url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        signatures = [value for key, value in query if key == "signature"]
        if len(signatures) != 1:
            return False

        unsigned_query = [(key, value) for key, value in query if key != "signature"]
        unsigned_url = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(unsigned_query), "")
        )
        if not hmac.compare_digest(self._signature(unsigned_url), signatures[0]):
            return False

        expires = dict(unsigned_query).get("expires")
        if expires is None or not expires.isdigit():
            return False
        return int(expires) > (now if now is not None else time.time())


class FileUrlService:
    """Picks the URL strategy for a disk and generates preview and download URLs."""

    def __init__(self, settings: Optional[Settings] = None, disks: Optional[Dict[str, Disk]] = None):
        self.settings = settings or get_settings()
        self._disks: Dict[str, Disk] = dict(disks or {})
        self.signer = UrlSigner(self.settings.SIGNING_KEY)

    def _disk_config(self, disk: str) -> Optional[DiskConfig]:
        return self.settings.DISKS.get(disk)

    def _disk(self, disk: str) -> Disk:
        if disk not in self._disks:
            self._disks[disk] = make_disk(disk, self.settings.DISKS)
        return self._disks[disk]

    def _expires_at(self, expiration_minutes: Optional[int]) -> datetime:
        minutes = expiration_minutes if expiration_minutes is not None else self.settings.URL_EXPIRATION
        return datetime.now(timezone.utc) + timedelta(minutes=minutes)

    def get_preview_url(
        self,
        disk: str,
        path: str,
        mode: str = "storage",
        identifier: Optional[str] = None,
        expiration_minutes: Optional[int] = None,
    ) -> Optional[str]:
        if self._disk_config(disk) is None:
            return None

        expires_at = self._expires_at(expiration_minutes)
        strategy = self.get_url_strategy(disk)

        if strategy == TEMPORARY_URL:
            try:
                return self._disk(disk).temporary_url(path, expires_at)
            except Exception as e:
                logging.warning(f"Temporary URL failed for '{path}' on disk '{disk}', using signed route: {e}")

        if strategy == PUBLIC_URL:
            try:
                return self._disk(disk).url(path)
            except Exception as e:
                logging.warning(f"Public URL failed for '{path}' on disk '{disk}', using signed route: {e}")

        return self.signer.sign(
            self.settings.STREAM_URL,
            {"disk": disk, "path": path, "mode": mode, "identifier": identifier},
            expires_at,
        )

    def get_download_url(
        self,
        disk: str,
        path: str,
        mode: str = "storage",
        identifier: Optional[str] = None,
        filename: Optional[str] = None,
        expiration_minutes: Optional[int] = None,
    ) -> str:
        return self.signer.sign(
            self.settings.DOWNLOAD_URL,
            {"disk": disk, "path": path, "mode": mode, "identifier": identifier, "filename": filename},
            self._expires_at(expiration_minutes),
        )

    def verify_signed_url(self, url: str) -> bool:
        return self.signer.verify(url)

    def get_url_strategy(self, disk: str) -> str:
        """Returns one of 'temporary_url', 'public_url' or 'signed_route'."""
        disk_config = self._disk_config(disk)
        if disk_config is None:
            return SIGNED_ROUTE

        configured = self.settings.URL_STRATEGY
        if configured != "auto":
            return PUBLIC_URL if configured == "direct" else SIGNED_ROUTE

        if disk in self.settings.FORCE_SIGNED_DISKS:
            return SIGNED_ROUTE

        if self._supports_temporary_urls(disk_config):
            return TEMPORARY_URL

        if self._is_publicly_accessible(disk, disk_config):
            return PUBLIC_URL

        return SIGNED_ROUTE

    @staticmethod
    def _supports_temporary_urls(disk_config: DiskConfig) -> bool:
        return disk_config.driver == "s3" or disk_config.temporary_url

    def _is_publicly_accessible(self, disk: str, disk_config: DiskConfig) -> bool:
        if disk in self.settings.PUBLIC_DISKS:
            return True
        if disk_config.visibility == "public" and disk_config.driver == "s3":
            return True
        return disk_config.public_url

    def requires_authentication(self, disk: str) -> bool:
        return disk not in self.settings.PUBLIC_ACCESS_DISKS

    def get_disk_info(self, disk: str) -> dict:
        disk_config = self._disk_config(disk)
        if disk_config is None:
            return {"exists": False, "strategy": "unknown", "driver": None, "requires_auth": True}

        return {
            "exists": True,
            "strategy": self.get_url_strategy(disk),
            "driver": disk_config.driver,
            "requires_auth": self.requires_authentication(disk),
            "supports_temporary_urls": self._supports_temporary_urls(disk_config),
            "is_publicly_accessible": self._is_publicly_accessible(disk, disk_config),
        }
