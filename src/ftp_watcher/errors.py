"""FTP File Watcher 예외 정의."""

from __future__ import annotations


class FtpWatcherError(Exception):
    """FTP File Watcher 기본 예외."""


class ConfigurationError(FtpWatcherError):
    """필수 설정 누락 (시작 시 치명적 오류)."""


class WatchFolderError(FtpWatcherError):
    """감시 폴더가 존재하지 않거나 디렉토리가 아님."""

    def __init__(self, path: str, message: str | None = None):
        super().__init__(message or f"감시 폴더가 존재하지 않습니다: {path}")
        self.path = path


class TransferError(FtpWatcherError):
    """FTP 전송 오류 (연결, 디렉토리 생성, 업로드)."""

    def __init__(self, operation: str, message: str, cause: BaseException | None = None):
        super().__init__(f"{operation} 실패: {message}")
        self.operation = operation
        self.cause = cause
