"""Core 모듈."""

from ftp_watcher.core.ledger import UploadLedger
from ftp_watcher.core.orchestrator import (
    Decision,
    UploadOrchestrator,
    UploadResult,
    UploadStatus,
    UploadTask,
)
from ftp_watcher.core.retry import RetryPolicy

__all__ = [
    "Decision",
    "RetryPolicy",
    "UploadLedger",
    "UploadOrchestrator",
    "UploadResult",
    "UploadStatus",
    "UploadTask",
]
