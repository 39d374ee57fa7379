"""Watcher 모듈."""

from ftp_watcher.watcher.file_watcher import FolderWatcher, is_hidden

__all__ = [
    "FolderWatcher",
    "is_hidden",
]
