"""Config 모듈."""

from ftp_watcher.config.settings import Settings

__all__ = ["Settings"]
