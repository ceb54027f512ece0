"""
test_cleanup.py - Cleanup Engine 테스트

DoD:
- 안전 게이트: 로컬 이미지가 없거나 파일명으로 쓸 수 없는 id는 절대 삭제하지 않음
- dry-run: 원격 변경 0
- not found → 성공
- safe prefix 밖의 객체는 삭제 거부
- 배치 실패 → 항목별 fallback
- both: 객체 삭제 실패한 행은 유지
"""

import logging
import threading

import pytest

from src.core.mirror import MirrorStore
from src.domain.errors import ErrorCodes, ListingError
from src.domain.schemas import CleanupMode
from src.services.cleanup import CleanupEngine
from src.services.export import Exporter


@pytest.fixture
def exported(gateway, store: MirrorStore, make_record):
    """레코드 1, 2는 export 완료, 3은 원격에만 있음."""
    for rid in ("1", "2"):
        gateway.add(make_record(rid))
    Exporter(gateway, store).export(gateway.list_approved())
    gateway.add(make_record("3"))
    return gateway


def _engine(gateway, store: MirrorStore, **kwargs) -> CleanupEngine:
    return CleanupEngine(gateway, store, **kwargs)


# =============================================================================
# 안전 게이트 / dry-run 테스트
# =============================================================================


class TestSafetyGate:
    """로컬 자산이 있는 레코드만 후보."""

    def test_mode_none_is_noop(self, exported, store: MirrorStore):
        result = _engine(exported, store).cleanup(CleanupMode.NONE, dry_run=False)

        assert result.candidates == []
        assert exported.calls_of("list_approved") == [None]  # fixture의 export 1회만
        assert exported.mutation_calls == []

    def test_only_exported_records_are_candidates(self, exported, store: MirrorStore):
        result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.candidates == ["1", "2"]
        assert "uploads/3.jpg" in exported.objects
        assert [r.id for r in exported.records] == ["3"]

    def test_asset_at_old_path_still_counts(self, gateway, store: MirrorStore, make_record):
        """카테고리 변경으로 해석 경로가 달라져도 같은 id의 자산이 있으면 후보."""
        gateway.add(make_record("1", category="Training"))
        Exporter(gateway, store).export(gateway.list_approved())
        gateway.records = [make_record("1", category="Match Day")]

        candidates = _engine(gateway, store).find_candidates(gateway.list_approved())

        assert [r.id for r in candidates] == ["1"]

    def test_duplicate_ids_collapse(self, exported, store: MirrorStore, make_record):
        records = exported.list_approved() + [make_record("1")]

        candidates = _engine(exported, store).find_candidates(records)

        assert [r.id for r in candidates] == ["1", "2"]

    def test_empty_mirror_deletes_nothing(self, gateway, store: MirrorStore, make_record):
        gateway.add(make_record("1"))

        result = _engine(gateway, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.candidates == []
        assert gateway.mutation_calls == []

    def test_unsafe_id_never_candidate(self, gateway, store: MirrorStore, make_record, caplog):
        """경로 구분자가 든 id가 다른 레코드의 자산으로 해석돼도 후보가 아님."""
        gateway.add(make_record("5"))
        gateway.add(make_record("../../2024/match-day/5", object_path="uploads/never-exported.jpg"))
        Exporter(gateway, store).export(gateway.list_approved())

        with caplog.at_level(logging.WARNING, logger="src.services.cleanup"):
            result = _engine(gateway, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.candidates == ["5"]
        assert "uploads/never-exported.jpg" in gateway.objects
        assert [r.id for r in gateway.records] == ["../../2024/match-day/5"]
        assert any("not usable as a file name" in r.getMessage() for r in caplog.records)

    def test_listing_failure_propagates(self, exported, store: MirrorStore):
        exported.list_error = True

        with pytest.raises(ListingError):
            _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert exported.mutation_calls == []


class TestDryRun:
    """dry-run은 로그만."""

    def test_no_mutation(self, exported, store: MirrorStore, caplog):
        with caplog.at_level(logging.INFO, logger="src.services.cleanup"):
            result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=True)

        assert result.dry_run is True
        assert result.candidates == ["1", "2"]
        assert exported.mutation_calls == []
        assert result.storage_deleted == 0
        assert result.table_deleted == 0
        messages = [r.getMessage() for r in caplog.records]
        assert "[DRY-RUN] would delete object: uploads/1.jpg (id=1)" in messages
        assert "[DRY-RUN] would delete row: id=2" in messages

    def test_dry_run_reports_refusals(self, gateway, store: MirrorStore, make_record, caplog):
        gateway.add(make_record("1", object_path="legacy/1.jpg"))
        Exporter(gateway, store).export(gateway.list_approved())

        with caplog.at_level(logging.INFO, logger="src.services.cleanup"):
            _engine(gateway, store).cleanup(CleanupMode.STORAGE, dry_run=True)

        assert any("would refuse object" in r.getMessage() for r in caplog.records)
        assert gateway.mutation_calls == []


# =============================================================================
# 삭제 테스트
# =============================================================================


class TestDeletion:
    """storage → table 순서, not found 허용."""

    def test_storage_only(self, exported, store: MirrorStore):
        result = _engine(exported, store).cleanup(CleanupMode.STORAGE, dry_run=False)

        assert result.storage_deleted == 2
        assert exported.calls_of("delete_records") == []
        assert sorted(exported.objects) == ["uploads/3.jpg"]
        assert [r.id for r in exported.records] == ["1", "2", "3"]

    def test_table_only(self, exported, store: MirrorStore):
        result = _engine(exported, store).cleanup(CleanupMode.TABLE, dry_run=False)

        assert result.table_deleted == 2
        assert exported.calls_of("delete_objects") == []
        assert "uploads/1.jpg" in exported.objects

    def test_both_deletes_storage_first(self, exported, store: MirrorStore):
        result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        methods = [name for name, _ in exported.mutation_calls]
        assert methods == ["delete_objects", "delete_records"]
        assert result.storage_deleted == 2
        assert result.table_deleted == 2
        assert result.failures == []

    def test_local_mirror_untouched(self, exported, store: MirrorStore):
        before = [loc.src for loc in store.scan_assets()]

        _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert [loc.src for loc in store.scan_assets()] == before
        assert store.load_sidecar("1") is not None

    def test_already_deleted_objects_are_not_found(self, exported, store: MirrorStore):
        """중단된 이전 실행이 객체를 이미 지운 경우."""
        del exported.objects["uploads/1.jpg"]

        result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.storage_deleted == 1
        assert result.storage_not_found == 1
        assert result.table_deleted == 2
        assert result.failures == []

    def test_second_run_is_clean(self, exported, store: MirrorStore):
        engine = _engine(exported, store)
        engine.cleanup(CleanupMode.BOTH, dry_run=False)

        result = engine.cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.candidates == []
        assert result.failures == []

    def test_object_outside_prefix_refused(self, gateway, store: MirrorStore, make_record):
        gateway.add(make_record("1", object_path="legacy/1.jpg"))
        gateway.add(make_record("2"))
        Exporter(gateway, store).export(gateway.list_approved())

        result = _engine(gateway, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert result.storage_refused == 1
        assert result.storage_deleted == 1
        assert "legacy/1.jpg" in gateway.objects
        assert gateway.calls_of("delete_objects") == [["uploads/2.jpg"]]
        assert result.table_deleted == 2

    def test_empty_prefix_allows_any_object(self, gateway, store: MirrorStore, make_record):
        gateway.add(make_record("1", object_path="legacy/1.jpg"))
        Exporter(gateway, store).export(gateway.list_approved())

        result = _engine(gateway, store, object_prefix="").cleanup(CleanupMode.STORAGE, dry_run=False)

        assert result.storage_deleted == 1
        assert result.storage_refused == 0


# =============================================================================
# 배치 / 실패 테스트
# =============================================================================


class TestBatching:
    """2단계 정책 (배치 → 항목별)."""

    def test_batches_bounded(self, gateway, store: MirrorStore, make_record):
        for i in range(1, 6):
            gateway.add(make_record(str(i)))
        Exporter(gateway, store).export(gateway.list_approved())

        _engine(gateway, store, storage_batch_size=2, table_batch_size=3).cleanup(
            CleanupMode.BOTH, dry_run=False
        )

        assert [len(b) for b in gateway.calls_of("delete_objects")] == [2, 2, 1]
        assert [len(b) for b in gateway.calls_of("delete_records")] == [3, 2]

    def test_batch_failure_falls_back_per_item(self, exported, store: MirrorStore):
        exported.fail_batch_deletes = True

        result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert exported.calls_of("delete_object") == ["uploads/1.jpg", "uploads/2.jpg"]
        assert exported.calls_of("delete_record") == ["1", "2"]
        assert result.storage_deleted == 2
        assert result.table_deleted == 2

    def test_failed_object_keeps_row(self, exported, store: MirrorStore):
        """both: 객체 삭제 실패 → 해당 행은 삭제하지 않음."""
        exported.fail_object_deletes.add("uploads/1.jpg")

        result = _engine(exported, store).cleanup(CleanupMode.BOTH, dry_run=False)

        assert [(f.id, f.code, f.stage) for f in result.failures] == [
            ("1", ErrorCodes.DELETE_FAILED, "cleanup-storage")
        ]
        assert exported.calls_of("delete_records") == [["2"]]
        assert [r.id for r in exported.records] == ["1", "3"]

    def test_row_failure_recorded(self, exported, store: MirrorStore):
        exported.fail_record_deletes.add("2")

        result = _engine(exported, store).cleanup(CleanupMode.TABLE, dry_run=False)

        assert result.table_deleted == 1
        assert [(f.id, f.stage) for f in result.failures] == [("2", "cleanup-table")]

    def test_cancel_between_batches(self, gateway, store: MirrorStore, make_record):
        for i in range(1, 5):
            gateway.add(make_record(str(i)))
        Exporter(gateway, store).export(gateway.list_approved())
        cancel = threading.Event()
        real_delete = gateway.delete_objects

        def delete_objects(paths):
            cancel.set()
            return real_delete(paths)

        gateway.delete_objects = delete_objects
        result = _engine(gateway, store, storage_batch_size=2).cleanup(
            CleanupMode.BOTH, dry_run=False, cancel_event=cancel
        )

        assert result.cancelled
        assert result.storage_deleted == 2
        assert gateway.calls_of("delete_records") == []
        assert len(gateway.records) == 4
