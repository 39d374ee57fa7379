"""FTP File Watcher 메인 진입점.

사용법:
    ftp-watcher <감시할 폴더>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable

from pydantic import ValidationError

from ftp_watcher.config.settings import Settings
from ftp_watcher.core.agent import UploadAgent
from ftp_watcher.errors import FtpWatcherError

logger = logging.getLogger(__name__)

USAGE_EXAMPLE = "예시: ftp-watcher C:\\MyDocuments\\uploads"


def build_parser() -> argparse.ArgumentParser:
    """CLI 파서 생성."""
    parser = argparse.ArgumentParser(
        prog="ftp-watcher",
        description="로컬 폴더 감시 → FTP 서버 미러링",
    )
    parser.add_argument(
        "folder",
        nargs="?",
        help="감시할 폴더 경로",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """CLI 인자 파싱 (폴더 누락 시 사용법 출력 후 종료 코드 1)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.folder:
        parser.print_usage(sys.stderr)
        print(USAGE_EXAMPLE, file=sys.stderr)
        sys.exit(1)

    return args


def setup_logging(level: str = "INFO") -> None:
    """로깅 설정."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    handler: Callable[[int], None],
) -> list[signal.Signals]:
    """SIGINT/SIGTERM 핸들러 등록.

    POSIX는 loop.add_signal_handler로 이벤트 루프를 즉시 깨웁니다.
    지원하지 않는 루프(Windows)는 signal.signal + call_soon_threadsafe 사용.

    Returns:
        add_signal_handler로 등록된 시그널 (종료 시 해제 대상)
    """
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handler, sig)
            installed.append(sig)
        except NotImplementedError:
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(handler, signum),
            )
    return installed


async def main(folder: str) -> None:
    """메인 함수.

    Args:
        folder: 감시할 폴더

    Raises:
        ValidationError: 설정값 범위 오류
        FtpWatcherError: FTP 설정 누락 / 감시 폴더 없음
    """
    settings = Settings()
    setup_logging(settings.log_level)

    agent = UploadAgent(settings=settings, watch_folder=folder)
    agent.check_watch_folder()

    # 시그널 핸들러
    loop = asyncio.get_running_loop()
    shutdown_tasks: list[asyncio.Task] = []

    def handle_signal(sig: int) -> None:
        logger.info(f"시그널 수신: {signal.Signals(sig).name}")
        shutdown_tasks.append(asyncio.create_task(agent.stop()))

    installed = install_signal_handlers(loop, handle_signal)

    try:
        await agent.start()
    except asyncio.CancelledError:
        logger.info("에이전트 취소됨")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await agent.stop()

    logger.info("FTP File Watcher 종료")


def run(argv: list[str] | None = None) -> None:
    """진입점."""
    args = parse_args(argv)

    try:
        asyncio.run(main(args.folder))
    except KeyboardInterrupt:
        logger.info("키보드 인터럽트")
    except (FtpWatcherError, ValidationError) as e:
        print(f"FTP File Watcher 시작 실패: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()
