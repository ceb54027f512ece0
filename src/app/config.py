"""
설정 로드: default.yaml (튜닝 값) + 환경변수/.env (비밀, 모드) + CLI 오버라이드

우선순위: CLI > 환경변수 > default.yaml > 코드 기본값
시작 시 PipelineSettings를 한 번 만들고 각 컴포넌트에 명시적으로 전달한다.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from src.domain.constants import (
    CLEANUP_MODE_ALIASES,
    DEFAULT_ASSETS_DIR,
    DEFAULT_BUCKET,
    DEFAULT_LOGS_DIR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_OBJECT_PREFIX,
    DEFAULT_PAGE_SIZE,
    DEFAULT_STORAGE_BATCH_SIZE,
    DEFAULT_TABLE,
    DEFAULT_TABLE_BATCH_SIZE,
    DEFAULT_TIMEOUT_SECONDS,
    TRUTHY_VALUES,
)
from src.domain.errors import ConfigurationError, ErrorCodes
from src.domain.schemas import CleanupMode

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "default.yaml"


@dataclass(frozen=True)
class PipelineSettings:
    """실행 1회 동안 불변인 설정."""
    supabase_url: str = ""
    service_role_key: str = ""
    bucket: str = DEFAULT_BUCKET
    table: str = DEFAULT_TABLE

    cleanup_mode: CleanupMode = CleanupMode.NONE
    cleanup_dry_run: bool = True
    object_prefix: str = DEFAULT_OBJECT_PREFIX
    storage_batch_size: int = DEFAULT_STORAGE_BATCH_SIZE
    table_batch_size: int = DEFAULT_TABLE_BATCH_SIZE

    assets_dir: Path = Path(DEFAULT_ASSETS_DIR)
    logs_dir: Path = Path(DEFAULT_LOGS_DIR)

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES

    log_level: str = "INFO"

    def require_remote(self) -> None:
        """
        원격 접근에 필요한 자격 증명 확인.

        Raises:
            ConfigurationError: MISSING_CREDENTIALS
        """
        missing = [
            name
            for name, value in (
                ("SUPABASE_URL", self.supabase_url),
                ("SUPABASE_SERVICE_ROLE_KEY", self.service_role_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(ErrorCodes.MISSING_CREDENTIALS, missing=missing)

    def with_overrides(self, **changes: Any) -> "PipelineSettings":
        """None이 아닌 값만 반영한 사본."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# =============================================================================
# Parsers
# =============================================================================


def parse_bool(value: Any, default: bool = False) -> bool:
    """"1/true/yes/y/on" → True, 빈 값 → default."""
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else "").strip().lower()
    if not text:
        return default
    return text in TRUTHY_VALUES


def parse_cleanup_mode(value: Any) -> CleanupMode:
    """
    CLEANUP_MODE 파싱 (구버전 별칭 db_only, db_and_storage 허용).

    Raises:
        ConfigurationError: INVALID_CLEANUP_MODE
    """
    if isinstance(value, CleanupMode):
        return value
    text = str(value if value is not None else "").strip().lower() or CleanupMode.NONE.value
    text = CLEANUP_MODE_ALIASES.get(text, text)
    try:
        return CleanupMode(text)
    except ValueError:
        raise ConfigurationError(
            ErrorCodes.INVALID_CLEANUP_MODE,
            value=value,
            allowed=[m.value for m in CleanupMode],
        ) from None


def _positive_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value) from None
    if number < 1:
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value)
    return number


def _non_negative_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value) from None
    if number < 0:
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value)
    return number


def _positive_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value) from None
    if number <= 0:
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting=name, value=value)
    return number


# =============================================================================
# Loading
# =============================================================================


def load_config(config_path: Path | None = None) -> dict:
    """설정 파일 로드 (없으면 빈 dict)."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(ErrorCodes.INVALID_SETTING, setting="config", path=str(config_path))
    return data


def _env(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(
    env: Mapping[str, str] | None = None,
    config_path: Path | None = None,
) -> PipelineSettings:
    """
    PipelineSettings 생성.

    Args:
        env: 환경변수 (None이면 .env 로드 후 os.environ)
        config_path: default.yaml 경로

    Returns:
        PipelineSettings

    Raises:
        ConfigurationError: 잘못된 모드/값
    """
    if env is None:
        load_dotenv()
        env = os.environ

    config = load_config(config_path)
    paths = config.get("paths", {}) or {}
    remote = config.get("remote", {}) or {}
    cleanup = config.get("cleanup", {}) or {}

    return PipelineSettings(
        supabase_url=_env(env, "SUPABASE_URL") or "",
        service_role_key=_env(env, "SUPABASE_SERVICE_ROLE_KEY") or "",
        bucket=_env(env, "SUPABASE_BUCKET") or remote.get("bucket", DEFAULT_BUCKET),
        table=_env(env, "SUPABASE_DB_TABLE") or remote.get("table", DEFAULT_TABLE),
        cleanup_mode=parse_cleanup_mode(
            _env(env, "CLEANUP_MODE") or cleanup.get("mode", CleanupMode.NONE.value)
        ),
        cleanup_dry_run=parse_bool(
            _env(env, "CLEANUP_DRY_RUN"), default=parse_bool(cleanup.get("dry_run"), default=True)
        ),
        object_prefix=str(cleanup.get("object_prefix", DEFAULT_OBJECT_PREFIX) or ""),
        storage_batch_size=_positive_int(
            "cleanup.storage_batch_size",
            cleanup.get("storage_batch_size", DEFAULT_STORAGE_BATCH_SIZE),
        ),
        table_batch_size=_positive_int(
            "cleanup.table_batch_size",
            cleanup.get("table_batch_size", DEFAULT_TABLE_BATCH_SIZE),
        ),
        assets_dir=Path(_env(env, "EXPORT_ASSETS_DIR") or paths.get("assets_dir", DEFAULT_ASSETS_DIR)),
        logs_dir=Path(paths.get("logs_dir", DEFAULT_LOGS_DIR)),
        timeout_seconds=_positive_float(
            "remote.timeout_seconds", remote.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        ),
        page_size=_positive_int("remote.page_size", remote.get("page_size", DEFAULT_PAGE_SIZE)),
        max_retries=_non_negative_int(
            "remote.max_retries", remote.get("max_retries", DEFAULT_MAX_RETRIES)
        ),
        log_level=_env(env, "LOG_LEVEL") or "INFO",
    )
