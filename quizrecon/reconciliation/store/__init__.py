from .filesystem import FilesystemArchiveStore
from .interface import ArchiveStore

__all__ = ["ArchiveStore", "FilesystemArchiveStore"]
