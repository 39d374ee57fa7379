"""재시도 정책 모듈.

지수 백오프 지연 계산 (상한 포함).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ftp_watcher.config.settings import Settings

# 기본 재시도 설정
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0  # 초
DEFAULT_MAX_DELAY = 30.0  # 초
DEFAULT_BACKOFF_MULTIPLIER = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """지수 백오프 재시도 정책.

    상태 없음 (설정값 4개만 보유) - 여러 업로드 태스크에서 공유 가능.

    Attributes:
        max_retries: 최초 시도 이후 추가 재시도 횟수
        initial_delay: 첫 재시도 전 대기 (초)
        max_delay: 대기 상한 (초)
        backoff_multiplier: 재시도마다 곱해지는 배수

    Examples:
        ```python
        policy = RetryPolicy(max_retries=3, initial_delay=1.0, max_delay=30.0)
        policy.delay_for_attempt(0)  # 1.0
        policy.delay_for_attempt(1)  # 2.0
        policy.delay_for_attempt(10)  # 30.0
        ```
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries는 0 이상이어야 합니다")
        if self.initial_delay < 0:
            raise ValueError("initial_delay는 0 이상이어야 합니다")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay는 initial_delay 이상이어야 합니다")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier는 1 이상이어야 합니다")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        """Settings(ms 단위)에서 정책 생성."""
        return cls(
            max_retries=settings.max_retries,
            initial_delay=settings.retry_delay_ms / 1000,
            max_delay=settings.max_retry_delay_ms / 1000,
            backoff_multiplier=settings.backoff_multiplier,
        )

    @property
    def total_attempts(self) -> int:
        """최초 시도를 포함한 전체 시도 횟수."""
        return self.max_retries + 1

    def delay_for_attempt(self, attempt_index: int) -> float:
        """재시도 대기 시간 계산.

        Args:
            attempt_index: 재시도 인덱스 (첫 재시도 = 0)

        Returns:
            min(initial_delay * multiplier^n, max_delay) 초
        """
        if attempt_index < 0:
            raise ValueError(f"attempt_index는 0 이상이어야 합니다: {attempt_index}")

        try:
            delay = self.initial_delay * self.backoff_multiplier**attempt_index
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)
