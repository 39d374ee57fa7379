"""Pytest fixtures for FTP File Watcher tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from ftp_watcher.config.settings import Settings
from ftp_watcher.core.ledger import UploadLedger
from ftp_watcher.core.orchestrator import UploadOrchestrator
from ftp_watcher.core.retry import RetryPolicy
from tests.fakes import FakeTransferClient


@pytest.fixture
def tmp_watch_dir(tmp_path: Path) -> Path:
    """임시 감시 디렉토리."""
    watch_dir = tmp_path / "watch"
    watch_dir.mkdir()
    return watch_dir


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    """임시 업로드 기록 파일 경로."""
    return tmp_path / "uploaded-files.json"


@pytest.fixture
def ledger(ledger_path: Path) -> UploadLedger:
    """빈 업로드 기록."""
    ledger = UploadLedger(ledger_path)
    ledger.load()
    return ledger


@pytest.fixture
def fake_client() -> FakeTransferClient:
    """항상 성공하는 전송 클라이언트."""
    return FakeTransferClient()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """대기 없는 재시도 정책 (재시도 2회)."""
    return RetryPolicy(max_retries=2, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def orchestrator(
    fake_client: FakeTransferClient,
    ledger: UploadLedger,
    fast_policy: RetryPolicy,
) -> UploadOrchestrator:
    """테스트용 오케스트레이터 (안정화 대기 없음)."""
    return UploadOrchestrator(
        transfer_client=fake_client,
        ledger=ledger,
        retry_policy=fast_policy,
        settle_delay=0,
    )


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """FTP 설정이 채워진 Settings (.env 무시)."""
    for key in list(os.environ):
        if key.startswith("FTP_"):
            monkeypatch.delenv(key)
    return Settings(
        _env_file=None,
        host="ftp.example.com",
        user="u",
        password="p",
        settle_delay_ms=0,
        retry_delay_ms=0,
        max_retry_delay_ms=0,
        stability_threshold_ms=200,
        poll_interval_ms=50,
        ledger_path=str(tmp_path / "uploaded-files.json"),
    )
