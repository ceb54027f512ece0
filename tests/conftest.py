"""
Pytest fixtures for the export pipeline tests.

구성:
- FakeGateway: 메모리 기반 원격 (레코드/객체, 호출 기록, 실패 주입)
- 로컬 미러 / 설정 fixture
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from src.app.config import PipelineSettings
from src.core.mirror import MirrorStore
from src.domain.errors import ErrorCodes, RemoteDeleteError, RemoteDownloadError, RemoteQueryError
from src.domain.schemas import CleanupMode, DeleteOutcome, SourceRecord
from src.gateway.base import RemoteGateway

# =============================================================================
# Fake Gateway
# =============================================================================


class FakeGateway(RemoteGateway):
    """
    메모리 기반 RemoteGateway.

    Attributes:
        records: 원격 테이블 (승인 여부 무관)
        objects: 원격 Storage (path → bytes)
        calls: (method, arg) 호출 기록
        fail_downloads / fail_object_deletes / fail_record_deletes: 실패 주입
        fail_batch_deletes: True면 일괄 삭제는 항상 실패 (항목별 fallback 유도)
        list_error: True면 list_approved가 RemoteQueryError
    """

    def __init__(
        self,
        records: list[SourceRecord] | None = None,
        objects: dict[str, bytes] | None = None,
    ):
        self.records: list[SourceRecord] = list(records or [])
        self.objects: dict[str, bytes] = dict(objects or {})
        self.calls: list[tuple[str, Any]] = []
        self.fail_downloads: set[str] = set()
        self.fail_object_deletes: set[str] = set()
        self.fail_record_deletes: set[str] = set()
        self.fail_batch_deletes = False
        self.list_error = False
        self.closed = False

    # --- helpers -------------------------------------------------------------

    def add(self, record: SourceRecord, data: bytes | None = b"image-bytes") -> SourceRecord:
        self.records.append(record)
        if record.object_path and data is not None:
            self.objects[record.object_path] = data
        return record

    def calls_of(self, method: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == method]

    @property
    def mutation_calls(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if call[0].startswith("delete")]

    # --- RemoteGateway -------------------------------------------------------

    def list_approved(self) -> list[SourceRecord]:
        self.calls.append(("list_approved", None))
        if self.list_error:
            raise RemoteQueryError(ErrorCodes.LISTING_FAILED, error="connection refused")
        return [r for r in self.records if r.status == "approved"]

    def download_object(self, object_path: str) -> bytes:
        self.calls.append(("download_object", object_path))
        if object_path in self.fail_downloads:
            raise RemoteDownloadError(ErrorCodes.DOWNLOAD_FAILED, object_path=object_path)
        if object_path not in self.objects:
            raise RemoteDownloadError(ErrorCodes.OBJECT_NOT_FOUND, object_path=object_path)
        return self.objects[object_path]

    def delete_objects(self, object_paths: list[str]) -> DeleteOutcome:
        self.calls.append(("delete_objects", list(object_paths)))
        if self.fail_batch_deletes or self.fail_object_deletes & set(object_paths):
            raise RemoteDeleteError(ErrorCodes.DELETE_FAILED, count=len(object_paths))
        outcome = DeleteOutcome()
        for path in object_paths:
            if self.objects.pop(path, None) is None:
                outcome.not_found.append(path)
            else:
                outcome.deleted.append(path)
        return outcome

    def delete_object(self, object_path: str) -> DeleteOutcome:
        self.calls.append(("delete_object", object_path))
        if object_path in self.fail_object_deletes:
            raise RemoteDeleteError(ErrorCodes.DELETE_FAILED, object_path=object_path)
        if self.objects.pop(object_path, None) is None:
            return DeleteOutcome(not_found=[object_path])
        return DeleteOutcome(deleted=[object_path])

    def _drop_record(self, record_id: str) -> bool:
        for i, record in enumerate(self.records):
            if record.id == record_id and record.status == "approved":
                del self.records[i]
                return True
        return False

    def delete_records(self, record_ids: list[str]) -> DeleteOutcome:
        self.calls.append(("delete_records", list(record_ids)))
        if self.fail_batch_deletes or self.fail_record_deletes & set(record_ids):
            raise RemoteDeleteError(ErrorCodes.DELETE_FAILED, count=len(record_ids))
        outcome = DeleteOutcome()
        for record_id in record_ids:
            if self._drop_record(record_id):
                outcome.deleted.append(record_id)
            else:
                outcome.not_found.append(record_id)
        return outcome

    def delete_record(self, record_id: str) -> DeleteOutcome:
        self.calls.append(("delete_record", record_id))
        if record_id in self.fail_record_deletes:
            raise RemoteDeleteError(ErrorCodes.DELETE_FAILED, id=record_id)
        if self._drop_record(record_id):
            return DeleteOutcome(deleted=[record_id])
        return DeleteOutcome(not_found=[record_id])

    def close(self) -> None:
        self.closed = True


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """프로젝트 루트 경로."""
    return Path(__file__).parent.parent


@pytest.fixture
def default_config_path(project_root: Path) -> Path:
    """default.yaml 경로."""
    return project_root / "default.yaml"


@pytest.fixture
def default_config(default_config_path: Path) -> dict:
    """기본 설정 로드."""
    with open(default_config_path, encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture
def assets_root(tmp_path: Path) -> Path:
    """로컬 미러 루트 (비어 있음)."""
    return tmp_path / "assets"


@pytest.fixture
def store(assets_root: Path) -> MirrorStore:
    return MirrorStore(assets_root)


# =============================================================================
# Record / Gateway Fixtures
# =============================================================================


@pytest.fixture
def make_record() -> Callable[..., SourceRecord]:
    """
    SourceRecord 팩토리.

    기본값: 승인됨, uploads/<id>.jpg, 2024년, 카테고리 "Match Day"
    """

    def _make(record_id: str = "1", **overrides: Any) -> SourceRecord:
        fields: dict[str, Any] = {
            "id": record_id,
            "object_path": f"uploads/{record_id}.jpg",
            "status": "approved",
            "uploader_name": "kim",
            "taken_at": "2024-05-01",
            "people": "",
            "category": "Match Day",
            "year": 2024,
            "created_at": f"2024-05-01T00:00:{int(record_id) % 60:02d}Z" if record_id.isdigit() else None,
        }
        fields.update(overrides)
        return SourceRecord(**fields)

    return _make


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settings(tmp_path: Path, assets_root: Path) -> PipelineSettings:
    """원격 자격 증명이 채워진 설정 (실제 네트워크는 FakeGateway로 대체)."""
    return PipelineSettings(
        supabase_url="https://example.supabase.co",
        service_role_key="service-role-key",
        assets_dir=assets_root,
        logs_dir=tmp_path / "logs",
        cleanup_mode=CleanupMode.NONE,
        cleanup_dry_run=True,
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """파이프라인 관련 환경변수 제거."""
    for name in (
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_BUCKET",
        "SUPABASE_DB_TABLE",
        "CLEANUP_MODE",
        "CLEANUP_DRY_RUN",
        "EXPORT_ASSETS_DIR",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
