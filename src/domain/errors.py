"""
Error definitions for the export pipeline.

분류:
- 치명적 (실행 중단): ConfigurationError, ListingError, MirrorLockError
- 항목 단위 (기록 후 계속): TransferError 계열
- 매니페스트 정합성: ManifestConsistencyError → 해당 항목만 제외
- 삭제 시 not found → 에러 아님 (이미 원하는 상태)
"""

from typing import Any


class PipelineError(Exception):
    """
    파이프라인 에러 기본 클래스.

    Usage:
        raise ConfigurationError(ErrorCodes.MISSING_CREDENTIALS, missing="SUPABASE_URL")
    """

    def __init__(self, code: str, **context: Any) -> None:
        self.code = code
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"[{self.code}] {ctx_str}" if ctx_str else f"[{self.code}]"

    def to_dict(self) -> dict[str, Any]:
        """로그/JSON 직렬화용."""
        return {
            "code": self.code,
            **{k: str(v) for k, v in self.context.items()},
        }


class ConfigurationError(PipelineError):
    """설정 오류. I/O 전에 중단."""


class ListingError(PipelineError):
    """승인 레코드 목록 조회 실패. 부분 상태가 안전하지 않으므로 중단."""


class RemoteQueryError(ListingError):
    """원격 DB 쿼리 실패 (전송/인증/타임아웃)."""


class MirrorLockError(PipelineError):
    """다른 실행이 로컬 미러 락을 보유 중."""


class TransferError(PipelineError):
    """항목 단위 전송 실패. 배치는 계속 진행."""

    def __init__(self, code: str, **context: Any) -> None:
        super().__init__(code, **context)
        self.not_found = code == ErrorCodes.OBJECT_NOT_FOUND


class RemoteDownloadError(TransferError):
    """Storage 객체 다운로드 실패."""


class RemoteDeleteError(TransferError):
    """Storage 객체 / DB 행 삭제 실패 (not found 제외)."""


class ManifestConsistencyError(PipelineError):
    """스캔 이후 매니페스트 항목의 원본 파일이 사라짐."""


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes:
    """에러 코드 상수."""

    # === Configuration ===
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    INVALID_CLEANUP_MODE = "INVALID_CLEANUP_MODE"
    INVALID_SETTING = "INVALID_SETTING"

    # === Listing ===
    LISTING_FAILED = "LISTING_FAILED"

    # === Transfer (per item) ===
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    OBJECT_NOT_FOUND = "OBJECT_NOT_FOUND"
    WRITE_FAILED = "WRITE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    DUPLICATE_RECORD_ID = "DUPLICATE_RECORD_ID"
    INVALID_RECORD_ID = "INVALID_RECORD_ID"

    # === Mirror / Manifest ===
    MIRROR_LOCKED = "MIRROR_LOCKED"
    ASSET_VANISHED = "ASSET_VANISHED"
