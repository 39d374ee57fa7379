"""Transfer 모듈."""

from ftp_watcher.transfer.ftp_client import FtpSession, FtpTransferClient

__all__ = [
    "FtpSession",
    "FtpTransferClient",
]
