"""FTP 전송 클라이언트 모듈.

aioftp 기반 비동기 FTP 클라이언트.
업로드 시도마다 새 세션(연결)을 엽니다.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import aioftp

from ftp_watcher.errors import TransferError

if TYPE_CHECKING:
    from ftp_watcher.config.settings import Settings

logger = logging.getLogger(__name__)

# aioftp가 던지는 오류 (프로토콜 오류 + 네트워크 오류)
FTP_EXCEPTIONS: tuple[type[BaseException], ...] = (
    aioftp.AIOFTPException,
    OSError,
    asyncio.TimeoutError,
)


class FtpSession:
    """단일 FTP 세션 (연결 1개).

    세션은 재사용하지 않습니다. 실패한 연결의 상태가
    다음 시도에 영향을 주지 않도록 시도마다 새로 엽니다.
    """

    def __init__(self, client: aioftp.Client, host: str) -> None:
        self._client = client
        self.host = host
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def ensure_directory(self, remote_dir: str) -> None:
        """원격 디렉토리 생성 (상위 포함).

        Args:
            remote_dir: '/' 구분 원격 디렉토리 경로

        Raises:
            TransferError: 디렉토리 생성 실패 시
        """
        self._ensure_open()
        try:
            await self._client.make_directory(remote_dir, parents=True)
        except FTP_EXCEPTIONS as e:
            raise TransferError("디렉토리 생성", f"{remote_dir}: {e}", e) from e

    async def upload_file(self, local_path: Path | str, remote_path: str) -> None:
        """로컬 파일을 원격 경로로 전송.

        Args:
            local_path: 로컬 파일 경로
            remote_path: '/' 구분 원격 파일 경로

        Raises:
            TransferError: 전송 실패 시
        """
        self._ensure_open()
        try:
            await self._client.upload(Path(local_path), remote_path, write_into=True)
        except FTP_EXCEPTIONS as e:
            raise TransferError("업로드", f"{remote_path}: {e}", e) from e

    async def close(self) -> None:
        """세션 종료 (QUIT 실패는 무시하고 소켓 정리)."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.quit()
        except FTP_EXCEPTIONS as e:
            logger.debug(f"FTP QUIT 실패 (무시): {e}")
        finally:
            self._client.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("FTP 세션이 이미 종료되었습니다")


class FtpTransferClient:
    """aioftp 기반 FTP 전송 클라이언트.

    기능:
    - 시도마다 독립된 세션 생성 (connect + login)
    - TLS 전송 지원 (secure=True)
    - aioftp/네트워크 예외를 TransferError로 변환

    Examples:
        ```python
        client = FtpTransferClient(
            host="ftp.example.com",
            user="uploader",
            password="secret",
        )

        session = await client.connect()
        try:
            await session.ensure_directory("photos/2024")
            await session.upload_file("/watch/photos/2024/a.jpg", "photos/2024/a.jpg")
        finally:
            await session.close()
        ```
    """

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 21,
        secure: bool = False,
        timeout: float = 30.0,
    ) -> None:
        """초기화.

        Args:
            host: FTP 서버 호스트
            user: 사용자
            password: 비밀번호
            port: 포트
            secure: TLS 사용 여부
            timeout: 연결/소켓 타임아웃 (초)
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> FtpTransferClient:
        """Settings에서 클라이언트 생성."""
        return cls(
            host=settings.host,
            user=settings.user,
            password=settings.password,
            port=settings.port,
            secure=settings.secure,
            timeout=settings.timeout,
        )

    def _create_client(self) -> aioftp.Client:
        return aioftp.Client(
            socket_timeout=self.timeout,
            connection_timeout=self.timeout,
            ssl=True if self.secure else None,
        )

    async def connect(self) -> FtpSession:
        """새 세션 연결 및 인증.

        Returns:
            FtpSession

        Raises:
            TransferError: 연결 또는 인증 실패 시
        """
        client = self._create_client()
        logger.info(f"FTP 서버 연결 중: {self.host}:{self.port}")

        try:
            await client.connect(self.host, self.port)
            await client.login(self.user, self.password)
        except FTP_EXCEPTIONS as e:
            client.close()
            raise TransferError("FTP 연결", f"{self.host}:{self.port}: {e}", e) from e

        return FtpSession(client, self.host)
