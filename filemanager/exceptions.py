# exceptions.py


class FileManagerError(Exception):
    """Base class for every error raised by the file manager core."""
    pass


class PathTraversalError(FileManagerError, ValueError):
    """A resolved path escapes the configured root. Always raised, never returned."""
    pass


class NotFoundError(FileManagerError):
    """The identifier does not resolve to a live row or path."""
    pass


class ConflictError(FileManagerError):
    """An item with the same name already exists in the target folder."""
    pass


class InvalidHierarchyError(FileManagerError):
    """The move would put a folder inside itself or one of its descendants."""
    pass


class BackendFailure(FileManagerError):
    """The underlying disk or database failed."""
    pass


class MaxDepthExceededError(FileManagerError, RuntimeError):
    """A recursive directory operation went past the nesting limit."""
    pass


class UnknownModeError(FileManagerError, ValueError):
    """The configured adapter mode is neither 'database' nor 'storage'."""
    pass
