"""UploadAgent 테스트."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from watchfiles import Change

from ftp_watcher.config.settings import Settings
from ftp_watcher.core.agent import UploadAgent
from ftp_watcher.core.ledger import UploadLedger
from ftp_watcher.core.orchestrator import UploadStatus
from ftp_watcher.errors import ConfigurationError, WatchFolderError
from tests.fakes import FakeTransferClient


@pytest.fixture
def agent(settings: Settings, tmp_watch_dir: Path, fake_client: FakeTransferClient) -> UploadAgent:
    return UploadAgent(
        settings=settings,
        watch_folder=tmp_watch_dir,
        transfer_client=fake_client,
    )


class TestAgentInit:
    """초기화 테스트."""

    def test_missing_credentials(self, tmp_watch_dir: Path) -> None:
        settings = Settings(_env_file=None, host="", user="u", password="p")

        with pytest.raises(ConfigurationError):
            UploadAgent(settings=settings, watch_folder=tmp_watch_dir)

    def test_components_from_settings(self, settings: Settings, tmp_watch_dir: Path) -> None:
        agent = UploadAgent(settings=settings, watch_folder=tmp_watch_dir)

        assert agent.transfer_client.host == "ftp.example.com"
        assert agent.retry_policy.max_retries == settings.max_retries
        assert agent.ledger.path == Path(settings.ledger_path)
        assert agent.watcher.watch_path == tmp_watch_dir.absolute()
        assert not agent.is_running

    def test_injected_empty_ledger_used(
        self, settings: Settings, tmp_watch_dir: Path, ledger: UploadLedger
    ) -> None:
        agent = UploadAgent(
            settings=settings,
            watch_folder=tmp_watch_dir,
            transfer_client=FakeTransferClient(),
            ledger=ledger,
        )

        assert agent.ledger is ledger

    def test_loads_existing_ledger(self, settings: Settings, tmp_watch_dir: Path) -> None:
        Path(settings.ledger_path).write_text(json.dumps(["a.txt"]), encoding="utf-8")

        agent = UploadAgent(
            settings=settings,
            watch_folder=tmp_watch_dir,
            transfer_client=FakeTransferClient(),
        )

        assert "a.txt" in agent.ledger


class TestWatchFolder:
    """감시 폴더 확인 테스트."""

    def test_missing_folder(self, settings: Settings, tmp_path: Path) -> None:
        agent = UploadAgent(
            settings=settings,
            watch_folder=tmp_path / "nope",
            transfer_client=FakeTransferClient(),
        )

        with pytest.raises(WatchFolderError) as exc_info:
            agent.check_watch_folder()

        assert "nope" in str(exc_info.value)

    def test_not_a_directory(self, settings: Settings, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        target.write_text("x")
        agent = UploadAgent(
            settings=settings,
            watch_folder=target,
            transfer_client=FakeTransferClient(),
        )

        with pytest.raises(WatchFolderError):
            agent.check_watch_folder()

    async def test_start_fails_without_folder(self, settings: Settings, tmp_path: Path) -> None:
        agent = UploadAgent(
            settings=settings,
            watch_folder=tmp_path / "nope",
            transfer_client=FakeTransferClient(),
        )

        with pytest.raises(WatchFolderError):
            await agent.start()


class TestDispatch:
    """이벤트 → 업로드 태스크 테스트."""

    async def test_dispatch_uploads(
        self, agent: UploadAgent, tmp_watch_dir: Path, fake_client: FakeTransferClient
    ) -> None:
        (tmp_watch_dir / "sub").mkdir()
        target = tmp_watch_dir / "sub" / "a.txt"
        target.write_text("hello")

        agent.dispatch(str(target), "added")
        results = await agent.wait_idle()

        assert [r.status for r in results] == [UploadStatus.SUCCEEDED]
        assert fake_client.remote_paths == ["sub/a.txt"]
        assert "sub/a.txt" in agent.ledger

    async def test_duplicate_added_uploads_once(
        self, agent: UploadAgent, tmp_watch_dir: Path, fake_client: FakeTransferClient
    ) -> None:
        target = tmp_watch_dir / "a.txt"
        target.write_text("hello")

        agent.dispatch(target, "added")
        agent.dispatch(target, "added")
        results = await agent.wait_idle()

        assert sorted(r.status.value for r in results) == ["skipped", "succeeded"]
        assert fake_client.remote_paths == ["a.txt"]

    async def test_task_named_by_path(self, agent: UploadAgent, tmp_watch_dir: Path) -> None:
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")

        job = agent.dispatch(target, "added")
        await agent.wait_idle()

        assert job.get_name() == "upload:a.txt"
        assert agent.get_stats()["in_flight"] == 0

    async def test_unexpected_error_isolated(
        self, agent: UploadAgent, tmp_watch_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """처리 중 예상 못 한 오류 → FAILED 결과, 전파 없음."""
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")
        agent.orchestrator.handle = AsyncMock(side_effect=RuntimeError("boom"))

        with caplog.at_level(logging.ERROR):
            agent.dispatch(target, "added")
            results = await agent.wait_idle()

        assert results[0].status == UploadStatus.FAILED
        assert results[0].error == "boom"
        assert any("파일 처리 오류" in r.getMessage() for r in caplog.records)

    async def test_failed_upload_not_recorded(
        self, settings: Settings, tmp_watch_dir: Path
    ) -> None:
        client = FakeTransferClient(fail_uploads=-1)
        agent = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=client)
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")

        agent.dispatch(target, "added")
        results = await agent.wait_idle()

        assert results[0].status == UploadStatus.FAILED
        assert results[0].attempts == settings.max_retries + 1
        assert "a.txt" not in agent.ledger


class TestStop:
    """종료 테스트."""

    async def test_stop_saves_ledger(self, agent: UploadAgent, settings: Settings) -> None:
        await agent.stop()

        assert json.loads(Path(settings.ledger_path).read_text(encoding="utf-8")) == []
        assert not agent.watcher.is_running

    async def test_stop_is_idempotent(self, agent: UploadAgent) -> None:
        agent.ledger.save = AsyncMock()

        await asyncio.gather(agent.stop(), agent.stop())
        await agent.stop()

        agent.ledger.save.assert_awaited_once()

    async def test_stop_cancels_in_flight(
        self, agent: UploadAgent, tmp_watch_dir: Path, fake_client: FakeTransferClient
    ) -> None:
        """진행 중 업로드는 중단되고 기록되지 않음."""
        fake_client.upload_hold = asyncio.Event()
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")

        job = agent.dispatch(target, "added")
        for _ in range(100):
            if fake_client.upload_calls or fake_client.sessions:
                break
            await asyncio.sleep(0.01)

        await agent.stop()

        assert job.cancelled()
        assert "a.txt" not in agent.ledger
        assert agent.get_stats()["in_flight"] == 0

    async def test_stop_waits_grace_period(
        self, settings: Settings, tmp_watch_dir: Path
    ) -> None:
        """grace 기간 안에 끝나는 업로드는 완료됨."""
        settings.shutdown_grace_ms = 2000
        client = FakeTransferClient()
        client.upload_hold = asyncio.Event()
        agent = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=client)
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")

        agent.dispatch(target, "added")
        await asyncio.sleep(0.05)
        asyncio.get_running_loop().call_later(0.1, client.upload_hold.set)

        await agent.stop()

        assert client.remote_paths == ["a.txt"]
        assert "a.txt" in agent.ledger


class TestStats:
    """통계 테스트."""

    async def test_get_stats(self, agent: UploadAgent, tmp_watch_dir: Path) -> None:
        target = tmp_watch_dir / "a.txt"
        target.write_text("x")
        agent.dispatch(target, "added")
        await agent.wait_idle()

        stats = agent.get_stats()

        assert stats["running"] is False
        assert stats["watch_folder"] == str(tmp_watch_dir.absolute())
        assert stats["ftp"] == {"host": "ftp.example.com", "port": 21, "secure": False}
        assert stats["uploads"] == {"succeeded": 1, "failed": 0, "skipped": 0}
        assert stats["ledger_size"] == 1
        assert "events" in stats["watcher"]


class TestEndToEnd:
    """감시 → 업로드 전체 흐름."""

    async def test_existing_and_new_files_uploaded(
        self, settings: Settings, tmp_watch_dir: Path, fake_client: FakeTransferClient
    ) -> None:
        settings.force_polling = True
        agent = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=fake_client)
        (tmp_watch_dir / "existing.txt").write_text("old")
        (tmp_watch_dir / ".hidden").write_text("h")

        task = asyncio.create_task(agent.start())
        for _ in range(100):
            if agent.watcher.is_ready:
                break
            await asyncio.sleep(0.05)
        await asyncio.sleep(0.3)

        (tmp_watch_dir / "nested").mkdir()
        (tmp_watch_dir / "nested" / "new.txt").write_text("new")

        for _ in range(100):
            if "nested/new.txt" in fake_client.remote_paths:
                break
            await asyncio.sleep(0.05)
        await agent.wait_idle()

        await agent.stop()
        await asyncio.wait_for(task, timeout=5.0)

        assert "existing.txt" in fake_client.remote_paths
        assert "nested/new.txt" in fake_client.remote_paths
        assert ".hidden" not in fake_client.remote_paths
        assert agent.ledger.contains("existing.txt")

    async def test_restart_skips_uploaded(
        self, settings: Settings, tmp_watch_dir: Path
    ) -> None:
        """재시작 후 기존 파일은 다시 올리지 않음."""
        (tmp_watch_dir / "a.txt").write_text("x")

        first_client = FakeTransferClient()
        first = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=first_client)
        first.dispatch(tmp_watch_dir / "a.txt", "added")
        await first.wait_idle()
        await first.stop()

        second_client = FakeTransferClient()
        second = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=second_client)
        second.dispatch(tmp_watch_dir / "a.txt", "added")
        results = await second.wait_idle()
        await second.stop()

        assert first_client.remote_paths == ["a.txt"]
        assert second_client.remote_paths == []
        assert results[0].status == UploadStatus.SKIPPED

    async def test_atomic_save_of_uploaded_file_reuploads(
        self, settings: Settings, tmp_watch_dir: Path
    ) -> None:
        """기록된 파일을 rename 방식으로 덮어써도 다시 업로드."""
        target = tmp_watch_dir / "a.txt"
        target.write_text("v1")
        Path(settings.ledger_path).write_text(json.dumps(["a.txt"]), encoding="utf-8")
        client = FakeTransferClient()
        agent = UploadAgent(settings=settings, watch_folder=tmp_watch_dir, transfer_client=client)

        # 시작 스캔: 이미 업로드된 파일이므로 건너뜀
        await agent.watcher._dispatch(Change.added, str(target))
        await agent.wait_idle()
        assert client.remote_paths == []

        part = tmp_watch_dir / "a.txt.part"
        part.write_text("version two")
        os.replace(part, target)
        await agent.watcher._dispatch(Change.added, str(target))
        results = await agent.wait_idle()

        assert [r.status for r in results] == [UploadStatus.SUCCEEDED]
        assert client.remote_paths == ["a.txt"]
