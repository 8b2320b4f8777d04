"""
File storage collaborators.
"""

from .file_storage import FileStorage, FileStorageError, LocalFileStorage

__all__ = ["FileStorage", "FileStorageError", "LocalFileStorage"]
