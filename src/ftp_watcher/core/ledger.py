"""업로드 기록(ledger) 모듈.

업로드 완료된 상대 경로 집합을 JSON 배열로 영속화합니다.
프로세스 재시작 후에도 동일 파일을 다시 업로드하지 않도록 합니다.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class UploadLedger:
    """업로드 완료 경로 기록.

    기능:
    - 시작 시 1회 로드 (파일 없음/손상 시 빈 집합)
    - 업로드 성공마다 전체 집합을 덮어쓰기로 저장
    - 저장 실패는 로그만 남김 (메모리 집합이 계속 기준)
    - asyncio.Lock으로 변경/저장 직렬화

    기록은 권고 용도입니다. 유실되더라도 중복 업로드만 발생할 뿐
    원격 파일 내용에는 영향이 없습니다.

    Examples:
        ```python
        ledger = UploadLedger(Path("uploaded-files.json"))
        ledger.load()

        if "docs/a.txt" not in ledger:
            ...
        await ledger.record("docs/a.txt")

        await ledger.save()  # 종료 시
        ```
    """

    def __init__(self, path: Path | str) -> None:
        """초기화.

        Args:
            path: 기록 파일 경로
        """
        self.path = Path(path)
        self._entries: set[str] = set()
        self._lock = asyncio.Lock()

    def load(self) -> set[str]:
        """기록 파일 로드.

        Returns:
            업로드 완료 상대 경로 집합 (파일 없음/손상 시 빈 집합)
        """
        self._entries = self._read()
        return set(self._entries)

    def _read(self) -> set[str]:
        if not self.path.exists():
            return set()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning(f"업로드 기록 로드 실패: {self.path}, {e}")
            return set()

        if not isinstance(data, list) or not all(isinstance(p, str) for p in data):
            logger.warning(f"업로드 기록 형식 오류 (문자열 배열 아님): {self.path}")
            return set()

        return set(data)

    def contains(self, relative_path: str) -> bool:
        """업로드 완료 여부."""
        return relative_path in self._entries

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot_size(self) -> int:
        """현재 기록된 경로 수 (시작 리포트용)."""
        return len(self._entries)

    async def record(self, relative_path: str) -> None:
        """업로드 완료 기록 후 즉시 저장.

        Args:
            relative_path: 감시 폴더 기준 상대 경로
        """
        async with self._lock:
            self._entries.add(relative_path)
            await self._persist()

    async def save(self) -> None:
        """현재 집합 저장 (graceful shutdown)."""
        async with self._lock:
            await self._persist()

    async def _persist(self) -> None:
        snapshot = sorted(self._entries)
        try:
            await asyncio.to_thread(self._write, snapshot)
        except OSError as e:
            logger.error(f"업로드 기록 저장 실패: {self.path}, {e}")

    def _write(self, entries: list[str]) -> None:
        """임시 파일에 쓴 후 교체 (전체 덮어쓰기)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
