"""
Data schemas for the export pipeline.

규칙:
- 원격 레코드는 읽기 전용 (SourceRecord는 frozen)
- 선택 필드는 None/빈 문자열 허용, 기본값 규칙은 core/paths.py의 순수 함수로
- 매니페스트는 로컬 파일 + sidecar에서 완전히 재생성 가능 (독립 상태 없음)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# =============================================================================
# Enums
# =============================================================================

class RecordStatus(str, Enum):
    """모더레이션 상태. 코어는 APPROVED만 읽는다."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CleanupMode(str, Enum):
    """
    원격 정리 모드.

    none: 아무것도 삭제하지 않음 (기본값, 명시적 opt-in 필요)
    table: DB 행만 삭제
    storage: Storage 객체만 삭제
    both: 둘 다 삭제 (storage → table 순서)
    """
    NONE = "none"
    TABLE = "table"
    STORAGE = "storage"
    BOTH = "both"

    @property
    def deletes_storage(self) -> bool:
        return self in (CleanupMode.STORAGE, CleanupMode.BOTH)

    @property
    def deletes_table(self) -> bool:
        return self in (CleanupMode.TABLE, CleanupMode.BOTH)


class RunMode(str, Enum):
    """파이프라인 실행 모드 (CLI 플래그와 1:1)."""
    EXPORT = "export"
    EXPORT_CLEANUP = "export-cleanup"
    CLEANUP_ONLY = "cleanup-only"
    REBUILD_ONLY = "rebuild-only"

    @property
    def needs_remote(self) -> bool:
        return self is not RunMode.REBUILD_ONLY


# =============================================================================
# Records
# =============================================================================

def _clean_str(value: Any) -> str | None:
    """None/공백 → None, 그 외 strip된 문자열."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> int | None:
    """정수 변환 (실패 시 None)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value)))
        except ValueError:
            return None


@dataclass(frozen=True)
class SourceRecord:
    """
    원격 DB의 사진 레코드 (읽기 전용).

    컬럼 매핑: image_path → object_path
    """
    id: str
    object_path: str | None = None
    status: str = RecordStatus.APPROVED.value
    uploader_name: str = ""
    taken_at: str | None = None
    people: str | None = None
    category: str | None = None
    year: int | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SourceRecord":
        """PostgREST 행 → SourceRecord. 누락/null 필드는 기본값."""
        return cls(
            id=str(row["id"]),
            object_path=_clean_str(row.get("image_path")),
            status=_clean_str(row.get("status")) or RecordStatus.PENDING.value,
            uploader_name=_clean_str(row.get("uploader_name")) or "",
            taken_at=_clean_str(row.get("taken_at")),
            people=_clean_str(row.get("people")),
            category=_clean_str(row.get("category")),
            year=_to_int(row.get("year")),
            created_at=_clean_str(row.get("created_at")),
        )


@dataclass(frozen=True)
class ResolvedAsset:
    """레코드 → 로컬 경로 해석 결과."""
    year: int
    category_slug: str
    extension: str
    src: str  # full/<year>/<slug>/<id>.<ext> (assets 루트 기준, '/' 구분)


# =============================================================================
# Sidecar / Manifest
# =============================================================================

@dataclass
class MetaSidecar:
    """항목별 메타데이터 (meta/<id>.json)."""
    id: str
    category: str
    uploader_name: str
    taken_at: str
    people: str
    year: int
    src: str
    source_object_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "uploader_name": self.uploader_name,
            "taken_at": self.taken_at,
            "people": self.people,
            "year": self.year,
            "src": self.src,
            "source_object_path": self.source_object_path,
        }


@dataclass
class ManifestEntry:
    """갤러리 렌더러가 읽는 매니페스트 항목."""
    id: str
    year: int | str
    category: str
    uploader_name: str
    taken_at: str
    people: str
    src: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "year": self.year,
            "category": self.category,
            "uploader_name": self.uploader_name,
            "taken_at": self.taken_at,
            "people": self.people,
            "src": self.src,
        }


# =============================================================================
# Stage Results
# =============================================================================

@dataclass
class ItemFailure:
    """항목 단위 실패 기록."""
    id: str
    code: str
    error: str
    stage: str = "export"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "error": self.error,
            "stage": self.stage,
        }


@dataclass
class ExportResult:
    """Exporter 실행 결과."""
    downloaded: int = 0
    skipped: int = 0
    meta_written: int = 0
    missing_object: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "downloaded": self.downloaded,
            "skipped": self.skipped,
            "meta_written": self.meta_written,
            "missing_object": self.missing_object,
            "failed": len(self.failures),
            "cancelled": self.cancelled,
        }


@dataclass
class ManifestBuildResult:
    """Manifest Builder 실행 결과."""
    entries: list[ManifestEntry] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    path: str | None = None
    changed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": len(self.entries),
            "added": len(self.added),
            "removed": len(self.removed),
            "dropped": len(self.dropped),
            "path": self.path,
            "changed": self.changed,
        }


@dataclass
class CleanupResult:
    """Cleanup Engine 실행 결과."""
    mode: str = CleanupMode.NONE.value
    dry_run: bool = True
    candidates: list[str] = field(default_factory=list)
    storage_deleted: int = 0
    storage_not_found: int = 0
    storage_refused: int = 0
    table_deleted: int = 0
    table_not_found: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "candidates": len(self.candidates),
            "storage_deleted": self.storage_deleted,
            "storage_not_found": self.storage_not_found,
            "storage_refused": self.storage_refused,
            "table_deleted": self.table_deleted,
            "table_not_found": self.table_not_found,
            "failed": len(self.failures),
            "cancelled": self.cancelled,
        }


@dataclass
class DeleteOutcome:
    """
    원격 삭제 결과.

    not_found는 실패가 아니라 "이미 없음" (원하는 최종 상태).
    """
    deleted: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


# =============================================================================
# Run Report
# =============================================================================

@dataclass
class RunLog:
    """실행 1회 보고서 (logs/run_<run_id>.json)."""
    run_id: str
    mode: str
    started_at: str
    dry_run: bool = True
    cleanup_mode: str = CleanupMode.NONE.value
    finished_at: str | None = None
    result: str = "pending"  # pending, success, partial, failed, cancelled

    export: dict[str, Any] | None = None
    manifest: dict[str, Any] | None = None
    cleanup: dict[str, Any] | None = None
    failures: list[ItemFailure] = field(default_factory=list)

    error_code: str | None = None
    error_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON 직렬화용."""
        result = {
            "run_id": self.run_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "dry_run": self.dry_run,
            "cleanup_mode": self.cleanup_mode,
            "export": self.export,
            "manifest": self.manifest,
            "cleanup": self.cleanup,
            "failures": [f.to_dict() for f in self.failures],
            "error_code": self.error_code,
            "error_context": self.error_context,
        }
        return {k: v for k, v in result.items() if v is not None}
