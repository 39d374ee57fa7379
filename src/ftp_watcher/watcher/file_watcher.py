"""watchfiles 기반 폴더 감시자.

하위 폴더 전체를 감시하며 숨김 항목(.으로 시작)은 무시합니다.
감시를 먼저 시작한 뒤 기존 파일을 "added"로 발송하므로
스캔 도중 생긴 파일도 놓치지 않습니다.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from collections.abc import AsyncGenerator, Callable, Coroutine
from pathlib import Path
from typing import Any

from watchfiles import Change, awatch

logger = logging.getLogger(__name__)

PathCallback = Callable[[str], Coroutine[Any, Any, None]]

# 감시 오류 후 재시작 대기 (초)
RESTART_DELAY = 1.0

# 한 묶음 안에서 같은 경로 이벤트 병합 시 우선순위
_CHANGE_PRIORITY = {
    Change.modified: 2,
    Change.added: 1,
    Change.deleted: 0,
}


def is_hidden(path: str | Path, root: str | Path) -> bool:
    """감시 폴더 기준 경로 중 하나라도 '.'으로 시작하면 숨김."""
    try:
        relative = Path(path).relative_to(root)
    except ValueError:
        return Path(path).name.startswith(".")
    return any(part.startswith(".") for part in relative.parts)


def file_signature(path: str) -> tuple[int, int] | None:
    """일반 파일의 (mtime_ns, size). 없거나 파일이 아니면 None."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    return st.st_mtime_ns, st.st_size


def coalesce_changes(changes: set[tuple[Change, str]]) -> dict[str, Change]:
    """한 묶음 안의 같은 경로 이벤트를 하나로 합침 (modified > added > deleted).

    modified가 섞여 있으면 항상 재업로드되도록 modified를 남깁니다.
    """
    merged: dict[str, Change] = {}
    for change_type, path in changes:
        current = merged.get(path)
        if current is None or _CHANGE_PRIORITY[change_type] > _CHANGE_PRIORITY[current]:
            merged[path] = change_type
    return merged


class FolderWatcher:
    """watchfiles 기반 폴더 감시자.

    Rust(Notify) 기반으로 OS 네이티브 API 사용:
    - Windows: ReadDirectoryChangesW
    - Linux: inotify
    - macOS: FSEvents

    SMB/NAS 공유 폴더는 force_polling=True로 폴링 모드 사용.

    알려진 파일(스캔 또는 이벤트로 본 파일)의 상태를 기억합니다:
    - 알려진 경로의 added (임시 파일 → rename 방식 저장) → modified로 발송
    - 상태가 그대로인 알려진 경로의 added (스캔과 감시가 겹친 경우) → 무시

    이벤트:
    - on_added(path): 파일 생성 (시작 시 기존 파일 포함)
    - on_modified(path): 파일 수정
    - on_ready(): 초기 스캔 완료
    - on_error(exc): 감시 오류 (감시는 재시작됨)
    """

    def __init__(
        self,
        watch_path: str | Path,
        on_added: PathCallback,
        on_modified: PathCallback,
        on_ready: Callable[[], Coroutine[Any, Any, None]] | None = None,
        on_error: Callable[[BaseException], Coroutine[Any, Any, None]] | None = None,
        stability_threshold_ms: int = 2000,
        poll_interval_ms: int = 100,
        force_polling: bool = False,
    ) -> None:
        """초기화.

        Args:
            watch_path: 감시할 디렉토리 경로
            on_added: 파일 생성 시 콜백 (async)
            on_modified: 파일 수정 시 콜백 (async)
            on_ready: 초기 스캔 완료 콜백 (async)
            on_error: 감시 오류 콜백 (async)
            stability_threshold_ms: 변경을 모아 발송하기까지 최대 대기 (ms)
            poll_interval_ms: 변경 확인 간격 (ms)
            force_polling: 폴링 모드 강제
        """
        self.watch_path = Path(watch_path).absolute()
        self.on_added = on_added
        self.on_modified = on_modified
        self.on_ready = on_ready
        self.on_error = on_error
        self.stability_threshold_ms = stability_threshold_ms
        self.poll_interval_ms = poll_interval_ms
        self.force_polling = force_polling

        self._running = False
        self._ready = False
        self._stop_event: asyncio.Event | None = None
        self._event_count = 0
        self._known: dict[str, tuple[int, int]] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_ready(self) -> bool:
        return self._ready

    def _watch_filter(self, change: Change, path: str) -> bool:
        """watchfiles 필터 (숨김 항목 제외)."""
        return not is_hidden(path, self.watch_path)

    def _scan_existing(self) -> list[str]:
        """기존 파일 목록 (숨김 항목 제외)."""
        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.watch_path):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if not name.startswith("."):
                    files.append(os.path.join(dirpath, name))
        return files

    async def start(self) -> None:
        """감시 시작 후 기존 파일 발송 (stop() 호출 시까지 반환하지 않음)."""
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info(f"폴더 감시 시작: {self.watch_path}")

        try:
            while self._running:
                try:
                    await self._watch()
                except Exception as e:
                    logger.error(f"감시 오류: {e}")
                    if self.on_error:
                        await self.on_error(e)
                    if self._running:
                        await asyncio.sleep(RESTART_DELAY)
                else:
                    break
        except asyncio.CancelledError:
            logger.info("폴더 감시 취소됨")
            raise
        finally:
            self._running = False

    async def _watch(self) -> None:
        changes_iter = awatch(
            self.watch_path,
            watch_filter=self._watch_filter,
            stop_event=self._stop_event,
            debounce=self.stability_threshold_ms,
            step=self.poll_interval_ms,
            force_polling=self.force_polling,
            recursive=True,
        )
        # 첫 __anext__에서 감시가 등록되고, 이후 변경은 모두 수집됨
        pending = asyncio.create_task(self._next_changes(changes_iter))
        try:
            await asyncio.sleep(0)
            await self._sync_existing()

            while self._running:
                changes = await pending
                if changes is None:
                    break

                for path, change_type in sorted(coalesce_changes(changes).items()):
                    await self._dispatch(change_type, path)

                pending = asyncio.create_task(self._next_changes(changes_iter))
        finally:
            if not pending.done():
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
            await changes_iter.aclose()

    @staticmethod
    async def _next_changes(
        changes_iter: AsyncGenerator[set[tuple[Change, str]], None],
    ) -> set[tuple[Change, str]] | None:
        try:
            return await changes_iter.__anext__()
        except StopAsyncIteration:
            return None

    async def _sync_existing(self) -> None:
        """기존 파일 발송 (재시작 시에는 감시가 멈춘 동안의 변경 보완)."""
        existing = await asyncio.to_thread(self._scan_existing)
        logger.info(f"기존 파일 스캔 완료: {len(existing)}개")
        for path in existing:
            if not self._running:
                return
            await self._dispatch(Change.added, path)

        if not self._ready:
            self._ready = True
            if self.on_ready:
                await self.on_ready()

    def _track(self, change_type: Change, path: str) -> Change | None:
        """알려진 파일 상태 갱신 후 발송할 이벤트 결정 (None이면 발송 안 함)."""
        if change_type == Change.deleted:
            self._known.pop(path, None)
            return None

        previous = self._known.get(path)
        current = file_signature(path)
        if current is None:
            self._known.pop(path, None)
        else:
            self._known[path] = current

        if change_type == Change.added and previous is not None:
            if previous == current:
                logger.debug(f"변경 없는 파일 건너뜀: {path}")
                return None
            return Change.modified
        return change_type

    async def _dispatch(self, change_type: Change, path: str) -> None:
        """이벤트 발송 (콜백 오류는 로그만 남김)."""
        resolved = self._track(change_type, path)
        if resolved is None:
            return

        self._event_count += 1
        try:
            if resolved == Change.added:
                logger.debug(f"파일 생성 감지: {path}")
                await self.on_added(path)
            elif resolved == Change.modified:
                logger.debug(f"파일 수정 감지: {path}")
                await self.on_modified(path)
        except Exception as e:
            logger.error(f"이벤트 처리 실패 ({path}): {e}")

    async def stop(self) -> None:
        """감시 중지."""
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        logger.info("폴더 감시 중지")

    def get_stats(self) -> dict[str, Any]:
        """통계 조회."""
        return {
            "running": self._running,
            "ready": self._ready,
            "watch_path": str(self.watch_path),
            "force_polling": self.force_polling,
            "events": self._event_count,
            "known_files": len(self._known),
        }
