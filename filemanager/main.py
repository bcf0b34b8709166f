# main.py
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import get_settings
from .database.session import configure_database, create_schema, get_session_maker
from .factory import AdapterFactory
from .storage.base import FileManagerAdapter
from .storage.disks import make_disk
from .storage.dto import FolderNode
from .sync import rebuild_from_disk
from .uploads import UploadedFile


def setup_logging():
    """Configures logging to console and, when LOG_FILE is set, to a file."""
    settings = get_settings()
    log_level_name = settings.LOG_LEVEL.upper()

    # Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_name)

    # Clear any existing handlers to prevent duplicate logs on re-runs or implicit configs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if settings.LOG_FILE:
        try:
            file_handler = logging.FileHandler(settings.LOG_FILE)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except IOError as e:
            # Log to console if file logging fails (e.g., permissions)
            root_logger.error(f"Failed to set up file logging to {settings.LOG_FILE}: {e}")

    # Reducing "noise" from third-party libraries
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _print_tree(nodes: List[FolderNode], indent: int = 0) -> None:
    for node in nodes:
        print(f"{'  ' * indent}{node.name}/ ({node.file_count} files)")
        _print_tree(node.children, indent + 1)


def cmd_list(adapter: FileManagerAdapter, path: Optional[str]) -> int:
    for item in adapter.get_items(path):
        if item.is_folder():
            print(f"{item.identifier}\t{item.name}/")
        else:
            print(f"{item.identifier}\t{item.name}\t{item.formatted_size()}")
    return 0


def cmd_tree(adapter: FileManagerAdapter) -> int:
    _print_tree(adapter.get_folder_tree())
    return 0


def upload_directory(adapter: FileManagerAdapter, local_dir: Path, target: Optional[str] = None) -> int:
    """
    Uploads a local directory tree through the adapter, creating folders as
    needed. Returns the number of failed entries.
    """
    failures = 0
    for entry in sorted(local_dir.iterdir()):
        if entry.is_dir():
            folder = adapter.create_folder(entry.name, target)
            if isinstance(folder, str):
                if folder != "A folder with this name already exists":
                    logging.error(f"Could not create folder '{entry.name}': {folder}")
                    failures += 1
                    continue
                existing = [f for f in adapter.get_folders(target) if f.name == entry.name]
                if not existing:
                    failures += 1
                    continue
                folder = existing[0]
            failures += upload_directory(adapter, entry, _folder_ref(adapter, folder))
        elif entry.is_file():
            with UploadedFile.from_path(entry) as file:
                result = adapter.upload_file(file, target)
            if isinstance(result, str):
                logging.error(f"Could not upload '{entry}': {result}")
                failures += 1
            else:
                print(f"Uploaded {entry} -> {result.path}")
    return failures


def _folder_ref(adapter: FileManagerAdapter, folder) -> str:
    # Database mode resolves folders by id, storage mode by path
    return folder.identifier if adapter.get_mode_name() == "database" else folder.path


def cmd_upload(adapter: FileManagerAdapter, local_dir: str, target: Optional[str]) -> int:
    source = Path(local_dir)
    if not source.is_dir():
        logging.error(f"Not a directory: {local_dir}")
        return 1
    return 1 if upload_directory(adapter, source, target) else 0


def cmd_rebuild(disk_name: Optional[str], root: str, force: bool) -> int:
    settings = get_settings()
    if not force:
        logging.error("Rebuilding replaces every file system item row. Pass --force to continue.")
        return 1

    disk_name = disk_name or settings.UPLOAD_DISK
    configure_database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    create_schema()
    result = rebuild_from_disk(
        get_session_maker(), make_disk(disk_name, settings.DISKS), root=root, show_hidden=settings.SHOW_HIDDEN
    )
    print(f"Imported {result.folders} folders and {result.files} files from disk '{disk_name}'.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Browse and manage files through the configured file manager backend.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List the items of a folder.")
    list_parser.add_argument("path", nargs="?", default=None, help="Folder path or id. Defaults to the root.")

    subparsers.add_parser("tree", help="Print the folder tree.")

    upload_parser = subparsers.add_parser("upload", help="Upload a local directory recursively.")
    upload_parser.add_argument("local_dir")
    upload_parser.add_argument("--to", dest="target", default=None, help="Destination folder path or id.")

    rebuild_parser = subparsers.add_parser("rebuild", help="Rebuild the database from the files on a disk.")
    rebuild_parser.add_argument("--disk", default=None, help="Disk to scan. Defaults to UPLOAD_DISK.")
    rebuild_parser.add_argument("--root", default="", help="Directory on the disk to scan.")
    rebuild_parser.add_argument("--force", action="store_true", help="Confirm that existing rows are replaced.")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        if args.command == "rebuild":
            return cmd_rebuild(args.disk, args.root, args.force)

        adapter = AdapterFactory(get_settings()).make()
        if args.command == "list":
            return cmd_list(adapter, args.path)
        if args.command == "tree":
            return cmd_tree(adapter)
        return cmd_upload(adapter, args.local_dir, args.target)
    except Exception as e:
        logging.critical(f"Command '{args.command}' failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
