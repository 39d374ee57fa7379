"""업로드 오케스트레이터.

파일 이벤트별 업로드 여부 판단 + 재시도 루프.

상태 전이:
    Evaluating → Uploading(k) → Succeeded
                              → Retrying → Uploading(k+1)
                              → Exhausted (max_retries + 1회 모두 실패)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Literal

from ftp_watcher.core.ledger import UploadLedger
from ftp_watcher.core.retry import RetryPolicy

if TYPE_CHECKING:
    from ftp_watcher.transfer.ftp_client import FtpSession, FtpTransferClient

logger = logging.getLogger(__name__)

# 업로드 전 파일 안정화 대기 (초)
SETTLE_DELAY = 1.0

EventKind = Literal["added", "modified"]


def normalize_remote_path(relative_path: str) -> str:
    """상대 경로를 '/' 구분 원격 경로로 변환.

    Examples:
        >>> normalize_remote_path("sub\\\\dir\\\\name.txt")
        'sub/dir/name.txt'
    """
    return relative_path.replace("\\", "/")


@dataclass(frozen=True)
class UploadTask:
    """단일 파일 업로드 작업 (영속화하지 않음).

    Attributes:
        local_path: 로컬 파일 경로
        relative_path: 감시 폴더 기준 상대 경로 ('/' 정규화)
        event_kind: 이벤트 종류 ("added" | "modified")
    """

    local_path: Path
    relative_path: str
    event_kind: EventKind

    def __post_init__(self) -> None:
        object.__setattr__(self, "relative_path", normalize_remote_path(self.relative_path))

    @classmethod
    def from_event(
        cls,
        path: str | Path,
        event_kind: EventKind,
        watch_root: Path,
    ) -> UploadTask:
        """파일 이벤트에서 작업 생성.

        Args:
            path: 이벤트 파일 경로
            event_kind: 이벤트 종류
            watch_root: 감시 폴더 (절대 경로)
        """
        local_path = Path(path)
        relative = os.path.relpath(local_path, watch_root)
        return cls(
            local_path=local_path,
            relative_path=relative,
            event_kind=event_kind,
        )

    @property
    def remote_path(self) -> str:
        return self.relative_path

    @property
    def remote_dir(self) -> str | None:
        """원격 상위 디렉토리 (루트면 None)."""
        parent = str(PurePosixPath(self.remote_path).parent)
        if parent in ("", "."):
            return None
        return parent


class Decision(str, Enum):
    """업로드 판단 결과."""

    SKIP = "skip"
    PROCEED = "proceed"


class UploadStatus(str, Enum):
    """작업 종료 상태."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UploadResult:
    """업로드 결과.

    Attributes:
        relative_path: 대상 상대 경로
        status: 종료 상태
        attempts: 실제 전송 시도 횟수
        error: 마지막 오류 메시지 (실패 시)
    """

    relative_path: str
    status: UploadStatus
    attempts: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCEEDED


class UploadOrchestrator:
    """파일별 업로드 상태 머신.

    기능:
    - 이벤트 시점 파일 상태 재확인 (삭제/디렉토리 → skip)
    - ledger 기반 중복 업로드 방지 (added 이벤트만)
    - 지수 백오프 재시도 (시도마다 새 FTP 세션)
    - 동일 경로 직렬화, 서로 다른 경로 동시 업로드 (상한 있음)

    Examples:
        ```python
        orchestrator = UploadOrchestrator(
            transfer_client=FtpTransferClient.from_settings(settings),
            ledger=ledger,
            retry_policy=RetryPolicy.from_settings(settings),
        )

        task = UploadTask.from_event(path, "added", watch_root)
        result = await orchestrator.handle(task)
        ```
    """

    def __init__(
        self,
        transfer_client: FtpTransferClient,
        ledger: UploadLedger,
        retry_policy: RetryPolicy,
        settle_delay: float = SETTLE_DELAY,
        max_concurrent: int = 4,
    ) -> None:
        """초기화.

        Args:
            transfer_client: FTP 전송 클라이언트
            ledger: 업로드 기록
            retry_policy: 재시도 정책
            settle_delay: 업로드 전 대기 (초)
            max_concurrent: 서로 다른 파일 동시 업로드 수
        """
        self.transfer_client = transfer_client
        self.ledger = ledger
        self.retry_policy = retry_policy
        self.settle_delay = settle_delay

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._path_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

        self.stats = {
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
        }

    def decide(self, task: UploadTask) -> Decision:
        """업로드 여부 판단.

        이벤트는 비동기로 도착하므로 판단 시점의 파일 상태를 다시 확인합니다.

        Args:
            task: 업로드 작업

        Returns:
            Decision.SKIP | Decision.PROCEED
        """
        if not task.local_path.exists():
            logger.info(f"파일 삭제 또는 이동됨: {task.relative_path}")
            return Decision.SKIP

        if not task.local_path.is_file():
            return Decision.SKIP

        if task.event_kind != "modified" and task.relative_path in self.ledger:
            logger.info(f"이미 업로드된 파일 건너뜀: {task.relative_path}")
            return Decision.SKIP

        return Decision.PROCEED

    async def handle(self, task: UploadTask) -> UploadResult:
        """이벤트 1건 처리 (판단 → 안정화 대기 → 업로드).

        동일 경로 작업은 직렬 처리되며, 판단은 잠금 획득 후 수행합니다.
        작업 단위 오류는 결과로 반환하고 예외로 전파하지 않습니다.

        Args:
            task: 업로드 작업

        Returns:
            UploadResult
        """
        async with self._path_lock(task.relative_path):
            if self.decide(task) == Decision.SKIP:
                self.stats["skipped"] += 1
                return UploadResult(task.relative_path, UploadStatus.SKIPPED)

            logger.info(f"파일 {task.event_kind}: {task.relative_path}")

            if self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)

            async with self._semaphore:
                result = await self.upload(task)

        self.stats["succeeded" if result.success else "failed"] += 1
        return result

    async def upload(self, task: UploadTask) -> UploadResult:
        """재시도 루프로 업로드.

        Args:
            task: 업로드 작업

        Returns:
            UploadResult (SUCCEEDED | FAILED)
        """
        policy = self.retry_policy
        last_error: Exception | None = None

        for attempt in range(policy.max_retries + 1):
            if attempt > 0:
                delay = policy.delay_for_attempt(attempt - 1)
                logger.info(
                    f"재시도 {attempt}/{policy.max_retries}: {task.relative_path} "
                    f"({delay * 1000:.0f}ms 후)"
                )
                await asyncio.sleep(delay)

            try:
                await self._attempt(task)
            except Exception as e:
                last_error = e
                if attempt < policy.max_retries:
                    logger.warning(
                        f"업로드 시도 {attempt + 1} 실패: {task.relative_path}, {e}"
                    )
                    continue

                logger.error(
                    f"업로드 최종 실패: {task.relative_path} "
                    f"({policy.total_attempts}회 시도), {e}"
                )
                return UploadResult(
                    task.relative_path,
                    UploadStatus.FAILED,
                    attempts=attempt + 1,
                    error=str(e),
                )

            await self.ledger.record(task.relative_path)
            logger.info(f"업로드 완료: {task.relative_path}")
            return UploadResult(
                task.relative_path,
                UploadStatus.SUCCEEDED,
                attempts=attempt + 1,
            )

        # max_retries >= 0 이므로 도달하지 않음
        return UploadResult(
            task.relative_path,
            UploadStatus.FAILED,
            attempts=policy.total_attempts,
            error=str(last_error),
        )

    async def _attempt(self, task: UploadTask) -> None:
        """단일 시도: 새 세션 → 디렉토리 확보 → 전송 → 세션 종료."""
        session = await self.transfer_client.connect()
        try:
            await self._ensure_remote_dir(session, task)

            logger.info(f"업로드 중: {task.local_path} -> {task.remote_path}")
            await session.upload_file(task.local_path, task.remote_path)
        finally:
            await self._close_session(session)

    async def _ensure_remote_dir(self, session: FtpSession, task: UploadTask) -> None:
        remote_dir = task.remote_dir
        if remote_dir is None:
            return

        try:
            await session.ensure_directory(remote_dir)
        except Exception as e:
            # 이미 존재하는 경우가 많음 - 전송은 계속 시도
            logger.warning(f"디렉토리 생성 실패 {remote_dir}: {e}")

    async def _close_session(self, session: FtpSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.debug(f"세션 종료 오류 (무시): {e}")

    @asynccontextmanager
    async def _path_lock(self, relative_path: str) -> AsyncIterator[None]:
        """경로별 잠금 (대기자가 없으면 제거)."""
        lock = self._path_locks.setdefault(relative_path, asyncio.Lock())
        self._lock_users[relative_path] = self._lock_users.get(relative_path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[relative_path] -= 1
            if self._lock_users[relative_path] == 0:
                del self._lock_users[relative_path]
                del self._path_locks[relative_path]

    @property
    def active_paths(self) -> list[str]:
        """처리 중이거나 대기 중인 경로."""
        return list(self._path_locks.keys())
