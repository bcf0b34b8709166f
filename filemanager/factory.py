# factory.py
import logging
from typing import Dict, Optional

from .config import Settings, get_settings
from .database.session import configure_database, create_schema, get_session_maker
from .database_adapter import DatabaseAdapter
from .exceptions import UnknownModeError
from .security import FileSecurityService
from .storage.base import FileManagerAdapter
from .storage.disks import Disk, make_disk
from .storage_adapter import StorageAdapter

DATABASE_MODE = "database"
STORAGE_MODE = "storage"


class AdapterFactory:
    """
    Builds the file manager backend selected by MODE.
    An unknown mode fails at construction time, never per call.
    """

    def __init__(self, settings: Optional[Settings] = None, disks: Optional[Dict[str, Disk]] = None):
        self.settings = settings or get_settings()
        self._disks: Dict[str, Disk] = dict(disks or {})

    def _disk(self, name: str) -> Disk:
        if name not in self._disks:
            self._disks[name] = make_disk(name, self.settings.DISKS)
        return self._disks[name]

    def _security(self) -> FileSecurityService:
        return FileSecurityService(self.settings)

    def make(self) -> FileManagerAdapter:
        mode = self.get_mode()
        if mode == DATABASE_MODE:
            return self.make_database()
        if mode == STORAGE_MODE:
            return self.make_storage()
        raise UnknownModeError(f"Unknown file manager mode: '{mode}'. Use 'database' or 'storage'.")

    def make_database(self) -> DatabaseAdapter:
        configure_database(self.settings.DATABASE_URL, echo=self.settings.DATABASE_ECHO)
        create_schema()
        logging.info(f"File manager running in database mode, uploads on disk '{self.settings.UPLOAD_DISK}'")
        return DatabaseAdapter(
            session_factory=get_session_maker(),
            disk=self._disk(self.settings.UPLOAD_DISK),
            disk_name=self.settings.UPLOAD_DISK,
            directory=self.settings.UPLOAD_DIRECTORY,
            url_expiration=self.settings.URL_EXPIRATION,
            security=self._security(),
        )

    def make_storage(self) -> StorageAdapter:
        logging.info(
            f"File manager running in storage mode on disk '{self.settings.STORAGE_DISK}', "
            f"root '{self.settings.STORAGE_ROOT or '/'}'"
        )
        return StorageAdapter(
            disk=self._disk(self.settings.STORAGE_DISK),
            disk_name=self.settings.STORAGE_DISK,
            root=self.settings.STORAGE_ROOT,
            show_hidden=self.settings.SHOW_HIDDEN,
            url_expiration=self.settings.URL_EXPIRATION,
            security=self._security(),
        )

    def get_mode(self) -> str:
        return self.settings.MODE

    def is_database_mode(self) -> bool:
        return self.get_mode() == DATABASE_MODE

    def is_storage_mode(self) -> bool:
        return self.get_mode() == STORAGE_MODE


def make_adapter(settings: Optional[Settings] = None) -> FileManagerAdapter:
    return AdapterFactory(settings).make()
