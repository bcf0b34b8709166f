from pathlib import Path
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Literal, Optional
import logging
from functools import lru_cache


class DiskConfig(BaseModel):
    """
    Configuration of one blob-storage disk, in the shape of a Laravel
    `filesystems.disks.<name>` entry.
    """

    driver: Literal["local", "s3"] = "local"
    root: Optional[str] = None
    url: Optional[str] = None

    # --- S3-compatible settings ---
    bucket: Optional[str] = None
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    key: Optional[str] = None
    secret: Optional[str] = None
    prefix: str = ""

    visibility: Literal["public", "private"] = "private"
    temporary_url: bool = False
    public_url: bool = False


def _default_disks() -> Dict[str, DiskConfig]:
    return {
        "local": DiskConfig(driver="local", root="storage/app"),
        "public": DiskConfig(
            driver="local", root="storage/app/public", url="/storage", visibility="public"
        ),
    }


class Settings(BaseSettings):
    """
    Centralized file manager configuration with type validation.
    Reads FILEMANAGER_* variables from the environment and the .env file.
    Adapters never read it directly: the factory hands them explicit values.
    """

    model_config = SettingsConfigDict(
        env_prefix="FILEMANAGER_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # --- General Settings ---
    MODE: str = "database"  # "database" or "storage"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[Path] = None

    # --- Database mode ---
    DATABASE_URL: str = "sqlite:///filemanager.db"
    DATABASE_ECHO: bool = False
    UPLOAD_DISK: str = "public"
    UPLOAD_DIRECTORY: str = "uploads"

    # --- Storage mode ---
    STORAGE_DISK: str = "public"
    STORAGE_ROOT: str = ""
    SHOW_HIDDEN: bool = False

    # --- Limits ---
    MAX_UPLOAD_SIZE: int = 100 * 1024 * 1024  # 100 MB
    MAX_PREVIEW_SIZE: int = 1024 * 1024
    URL_EXPIRATION: int = 60  # minutes

    # --- Disks ---
    DISKS: Dict[str, DiskConfig] = Field(default_factory=_default_disks)

    # --- Upload security ---
    BLOCKED_EXTENSIONS: List[str] = Field(
        default_factory=lambda: [
            "php", "phtml", "php3", "php4", "php5", "phar", "exe", "bat", "cmd",
            "sh", "cgi", "pl", "py", "jsp", "asp", "aspx", "htaccess", "com", "scr",
        ]
    )
    BLOCKED_FILENAME_PATTERNS: List[str] = Field(
        default_factory=lambda: [r"/\.\./", r"^\.", r"[\x00-\x1f]"]
    )
    ALLOWED_MIMES: List[str] = Field(default_factory=list)
    VALIDATE_MIME: bool = True
    SANITIZE_FILENAMES: bool = True
    RENAME_UPLOADS: bool = False
    MAX_FILENAME_LENGTH: int = 255
    SANITIZE_EXTENSIONS: List[str] = Field(default_factory=lambda: ["svg", "html", "htm"])

    # --- URL generation / streaming ---
    URL_STRATEGY: Literal["auto", "signed_route", "direct"] = "auto"
    PUBLIC_DISKS: List[str] = Field(default_factory=lambda: ["public"])
    FORCE_SIGNED_DISKS: List[str] = Field(default_factory=list)
    PUBLIC_ACCESS_DISKS: List[str] = Field(default_factory=list)
    STREAM_URL: str = "/filemanager/stream"
    DOWNLOAD_URL: str = "/filemanager/download"
    SIGNING_KEY: str = "change-me"

    @model_validator(mode="before")
    @classmethod
    def clean_mode(cls, values):
        if not isinstance(values, dict):
            return values
        mode = values.get("MODE")
        if isinstance(mode, str):
            # Keep unknown modes: the adapter factory is the one that rejects them.
            values["MODE"] = mode.strip().lower()
        return values

    @model_validator(mode="after")
    def check_disks_are_configured(self):
        for field_name in ("STORAGE_DISK", "UPLOAD_DISK"):
            disk = getattr(self, field_name)
            if disk not in self.DISKS:
                raise ValueError(
                    f"{field_name} '{disk}' is not defined in DISKS ({', '.join(sorted(self.DISKS))})"
                )
        if self.SIGNING_KEY == "change-me":
            logging.warning(
                "FILEMANAGER_SIGNING_KEY is not set. Signed URLs use the default key."
            )
        return self

    def disk_config(self, name: str) -> DiskConfig:
        return self.DISKS[name]


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the file manager settings.
    The first call to this function will initialize the settings.
    """
    return Settings()
