"""FTP File Watcher 설정 모듈.

환경 변수 기반 단일 Settings 클래스.
작업 디렉토리의 .env 파일도 함께 읽습니다.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ftp_watcher.errors import ConfigurationError


class Settings(BaseSettings):
    """FTP File Watcher 설정.

    환경 변수 PREFIX: FTP_

    Examples:
        ```bash
        export FTP_HOST=ftp.example.com
        export FTP_USER=uploader
        export FTP_PASSWORD=secret
        export FTP_MAX_RETRIES=5
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="FTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === FTP 연결 설정 ===
    host: str = Field(
        default="",
        description="FTP 서버 호스트",
    )
    port: int = Field(
        default=21,
        ge=1,
        le=65535,
        description="FTP 서버 포트",
    )
    user: str = Field(
        default="",
        description="FTP 사용자",
    )
    password: str = Field(
        default="",
        description="FTP 비밀번호",
    )
    secure: bool = Field(
        default=False,
        description="TLS 연결 사용 여부",
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="FTP 연결/소켓 타임아웃 (초)",
    )

    # === 재시도 설정 ===
    max_retries: int = Field(
        default=3,
        ge=0,
        le=100,
        description="최초 시도 이후 추가 재시도 횟수",
    )
    retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="지수 백오프 기본 지연 (ms)",
    )
    max_retry_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="지수 백오프 최대 지연 (ms)",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=100.0,
        description="지수 백오프 증가 배수",
    )

    # === 업로드 설정 ===
    settle_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=60000,
        description="업로드 전 파일 안정화 대기 (ms)",
    )
    max_concurrent_uploads: int = Field(
        default=4,
        ge=1,
        le=64,
        description="서로 다른 파일의 동시 업로드 수",
    )
    shutdown_grace_ms: int = Field(
        default=0,
        ge=0,
        description="종료 시 진행 중 업로드 대기 시간 (ms)",
    )
    ledger_path: str = Field(
        default="uploaded-files.json",
        description="업로드 기록 파일 경로 (작업 디렉토리 기준)",
    )

    # === 감시 설정 ===
    stability_threshold_ms: int = Field(
        default=2000,
        ge=0,
        le=60000,
        description="쓰기 완료 판정 대기 시간 (ms)",
    )
    poll_interval_ms: int = Field(
        default=100,
        ge=10,
        le=10000,
        description="변경 확인 간격 (ms)",
    )
    force_polling: bool = Field(
        default=False,
        description="폴링 방식 강제 (SMB/NAS 공유 폴더용)",
    )

    # === 로깅 설정 ===
    log_level: str = Field(
        default="INFO",
        description="로그 레벨 (DEBUG, INFO, WARNING, ERROR)",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> Settings:
        """백오프 지연 범위 검증."""
        if self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError("max_retry_delay_ms는 retry_delay_ms 이상이어야 합니다")
        return self

    @property
    def is_ftp_configured(self) -> bool:
        """FTP 필수 설정(host, user, password) 완료 여부."""
        return bool(self.host and self.user and self.password)

    @property
    def full_ledger_path(self) -> Path:
        """업로드 기록 파일 전체 경로."""
        return Path.cwd() / self.ledger_path

    def require_ftp(self) -> None:
        """FTP 필수 설정 확인.

        Raises:
            ConfigurationError: host/user/password 중 하나라도 비어 있을 때
        """
        if not self.is_ftp_configured:
            raise ConfigurationError(
                "FTP 설정 누락. 필수: FTP_HOST, FTP_USER, FTP_PASSWORD"
            )

    def to_dict(self) -> dict[str, Any]:
        """설정을 딕셔너리로 변환 (민감 정보 마스킹)."""
        data = self.model_dump()
        if data.get("password"):
            data["password"] = "***"
        return data
