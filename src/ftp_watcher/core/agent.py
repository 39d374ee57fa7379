"""UploadAgent - 폴더 감시 → FTP 업로드 에이전트.

설계:
- 파일 이벤트마다 asyncio 태스크 1개 생성 (감시 루프를 막지 않음)
- 동일 경로는 오케스트레이터에서 직렬화
- 종료 시 감시 중지 → 진행 중 업로드 정리 → 업로드 기록 저장
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from ftp_watcher.config.settings import Settings
from ftp_watcher.core.ledger import UploadLedger
from ftp_watcher.core.orchestrator import (
    EventKind,
    UploadOrchestrator,
    UploadResult,
    UploadStatus,
    UploadTask,
)
from ftp_watcher.core.retry import RetryPolicy
from ftp_watcher.errors import WatchFolderError
from ftp_watcher.transfer.ftp_client import FtpTransferClient
from ftp_watcher.watcher.file_watcher import FolderWatcher

logger = logging.getLogger(__name__)


class UploadAgent:
    """폴더 감시 → FTP 업로드 에이전트.

    기능:
    - 감시 폴더 하위 파일 생성/수정 이벤트 수신
    - 이벤트별 업로드 태스크 생성 (서로 다른 파일은 동시 처리)
    - 업로드 기록(ledger) 로드/저장
    - graceful shutdown

    Examples:
        ```python
        settings = Settings()
        agent = UploadAgent(settings=settings, watch_folder="/data/outbox")

        await agent.start()  # stop() 호출 시까지 실행
        await agent.stop()   # graceful shutdown
        ```
    """

    def __init__(
        self,
        settings: Settings,
        watch_folder: str | Path,
        transfer_client: FtpTransferClient | None = None,
        ledger: UploadLedger | None = None,
    ) -> None:
        """초기화.

        Args:
            settings: 설정
            watch_folder: 감시할 폴더
            transfer_client: FTP 전송 클라이언트 (기본: 설정에서 생성)
            ledger: 업로드 기록 (기본: settings.full_ledger_path)

        Raises:
            ConfigurationError: FTP 필수 설정 누락 시
        """
        settings.require_ftp()

        self.settings = settings
        self.watch_folder = Path(watch_folder).absolute()
        self._running = False
        self._stopping: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

        # 컴포넌트 초기화
        # UploadLedger는 __len__이 있어 빈 기록도 falsy
        self.ledger = ledger if ledger is not None else UploadLedger(settings.full_ledger_path)
        self.ledger.load()

        self.transfer_client = transfer_client or FtpTransferClient.from_settings(settings)
        self.retry_policy = RetryPolicy.from_settings(settings)

        self.orchestrator = UploadOrchestrator(
            transfer_client=self.transfer_client,
            ledger=self.ledger,
            retry_policy=self.retry_policy,
            settle_delay=settings.settle_delay_ms / 1000,
            max_concurrent=settings.max_concurrent_uploads,
        )

        self.watcher = FolderWatcher(
            watch_path=self.watch_folder,
            on_added=self._handle_added,
            on_modified=self._handle_modified,
            on_ready=self._handle_ready,
            on_error=self._handle_watch_error,
            stability_threshold_ms=settings.stability_threshold_ms,
            poll_interval_ms=settings.poll_interval_ms,
            force_polling=settings.force_polling,
        )

    def check_watch_folder(self) -> None:
        """감시 폴더 확인.

        Raises:
            WatchFolderError: 폴더가 없거나 디렉토리가 아닐 때
        """
        if not self.watch_folder.exists():
            raise WatchFolderError(str(self.watch_folder))
        if not self.watch_folder.is_dir():
            raise WatchFolderError(
                str(self.watch_folder),
                f"감시 경로가 디렉토리가 아닙니다: {self.watch_folder}",
            )

    async def start(self) -> None:
        """에이전트 시작 (감시 중지 시까지 반환하지 않음).

        Raises:
            WatchFolderError: 감시 폴더가 없을 때
        """
        self.check_watch_folder()

        policy = self.retry_policy
        logger.info("=" * 60)
        logger.info("FTP File Watcher 시작")
        logger.info("=" * 60)
        logger.info(f"감시 폴더: {self.watch_folder}")
        logger.info(f"업로드 기록: {self.ledger.path}")
        logger.info(
            f"재시도 설정: 최대 {policy.max_retries}회, "
            f"초기 지연 {policy.initial_delay * 1000:.0f}ms, "
            f"최대 지연 {policy.max_delay * 1000:.0f}ms, 배수 {policy.backoff_multiplier}"
        )
        logger.info(f"FTP 서버: {self.settings.host}:{self.settings.port}")
        logger.info(f"업로드된 파일: {self.ledger.snapshot_size()}개")
        logger.info("=" * 60)

        self._running = True
        try:
            await self.watcher.start()
        except asyncio.CancelledError:
            logger.info("UploadAgent 태스크 취소됨")
            raise

    def dispatch(self, path: str | Path, event_kind: EventKind) -> asyncio.Task:
        """파일 이벤트를 업로드 태스크로 전달.

        Args:
            path: 이벤트 파일 경로
            event_kind: "added" | "modified"

        Returns:
            생성된 asyncio 태스크
        """
        task = UploadTask.from_event(path, event_kind, self.watch_folder)
        job = asyncio.create_task(
            self._run_task(task),
            name=f"upload:{task.relative_path}",
        )
        self._tasks.add(job)
        job.add_done_callback(self._tasks.discard)
        return job

    async def _run_task(self, task: UploadTask) -> UploadResult:
        """업로드 태스크 실행 (오류는 다른 태스크/감시에 전파하지 않음)."""
        try:
            return await self.orchestrator.handle(task)
        except Exception as e:
            logger.error(f"파일 처리 오류: {task.relative_path}, {e}")
            return UploadResult(task.relative_path, UploadStatus.FAILED, error=str(e))

    async def _handle_added(self, path: str) -> None:
        self.dispatch(path, "added")

    async def _handle_modified(self, path: str) -> None:
        self.dispatch(path, "modified")

    async def _handle_ready(self) -> None:
        logger.info("폴더 감시 준비 완료, 변경 대기 중...")

    async def _handle_watch_error(self, error: BaseException) -> None:
        logger.error(f"감시자 오류: {error}")

    async def wait_idle(self) -> list[UploadResult]:
        """현재 진행 중인 업로드 태스크 완료 대기."""
        results: list[UploadResult] = []
        while self._tasks:
            done = await asyncio.gather(*list(self._tasks), return_exceptions=True)
            results.extend(r for r in done if isinstance(r, UploadResult))
        return results

    async def stop(self) -> None:
        """에이전트 중지 (graceful shutdown, 중복 호출 허용)."""
        if self._stopping is None:
            self._stopping = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._stopping)

    async def _shutdown(self) -> None:
        logger.info("UploadAgent 중지 시작...")
        self._running = False

        # 감시자 중지
        await self.watcher.stop()

        # 진행 중 업로드 정리
        pending = set(self._tasks)
        if pending:
            grace = self.settings.shutdown_grace_ms / 1000
            if grace > 0:
                logger.info(f"진행 중 업로드 {len(pending)}건 대기 (최대 {grace}초)")
                _, pending = await asyncio.wait(pending, timeout=grace)

            for job in pending:
                job.cancel()
            if pending:
                logger.warning(f"진행 중 업로드 {len(pending)}건 중단")
                await asyncio.gather(*pending, return_exceptions=True)

        # 업로드 기록 저장
        logger.info("업로드 기록 저장 중...")
        await self.ledger.save()

        logger.info("UploadAgent 중지 완료")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, Any]:
        """상태 통계 조회."""
        return {
            "running": self._running,
            "watch_folder": str(self.watch_folder),
            "ftp": {
                "host": self.settings.host,
                "port": self.settings.port,
                "secure": self.settings.secure,
            },
            "uploads": dict(self.orchestrator.stats),
            "in_flight": len(self._tasks),
            "ledger_size": self.ledger.snapshot_size(),
            "watcher": self.watcher.get_stats(),
        }
