"""
Cleanup Engine: export 완료된 항목의 원격 객체/행 삭제

안전 규칙:
- mode=none → 아무것도 하지 않음 (파괴적 동작은 명시적 opt-in)
- 승인 목록을 새로 조회 (export 실행의 메모리 목록을 재사용하지 않음)
- 로컬 이미지가 디스크에 있는 레코드만 후보 (절대 우회하지 않는 게이트)
- dry-run → 의도만 로그, 변경 0
- safe prefix 밖의 객체는 삭제 거부
- both 모드: 객체 삭제 실패한 레코드는 행도 남긴다 (객체 고아 방지)
- 로컬 미러/매니페스트는 건드리지 않음
"""

import logging
import threading
from collections.abc import Callable

from src.core.mirror import MirrorStore
from src.core.paths import is_safe_record_id, resolve_asset_path
from src.domain.constants import DEFAULT_OBJECT_PREFIX, DEFAULT_STORAGE_BATCH_SIZE, DEFAULT_TABLE_BATCH_SIZE
from src.domain.errors import PipelineError
from src.domain.schemas import CleanupMode, CleanupResult, ItemFailure, SourceRecord
from src.gateway.base import RemoteGateway
from src.utils.retry import run_batches_with_fallback

logger = logging.getLogger(__name__)


class CleanupEngine:
    """
    원격 정리.

    로컬 자산이 영구 보관본, 원격은 export 이후 임시 스테이징으로 취급.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        store: MirrorStore,
        object_prefix: str = DEFAULT_OBJECT_PREFIX,
        storage_batch_size: int = DEFAULT_STORAGE_BATCH_SIZE,
        table_batch_size: int = DEFAULT_TABLE_BATCH_SIZE,
    ):
        """
        Args:
            gateway: 원격 게이트웨이
            store: 로컬 미러 (후보 판정용, 읽기 전용)
            object_prefix: 삭제 허용 prefix ("" → 제한 없음)
            storage_batch_size: Storage 일괄 삭제 크기
            table_batch_size: DB 일괄 삭제 크기
        """
        self.gateway = gateway
        self.store = store
        self.object_prefix = object_prefix
        self.storage_batch_size = storage_batch_size
        self.table_batch_size = table_batch_size

    # -------------------------------------------------------------------------
    # Candidates
    # -------------------------------------------------------------------------

    def find_candidates(self, records: list[SourceRecord]) -> list[SourceRecord]:
        """
        안전 게이트: 로컬 이미지가 있는 레코드만.

        해석된 경로, 또는 같은 id의 기존 자산(카테고리 변경 등으로 경로가
        달라진 경우) 중 하나가 디스크에 있어야 한다.
        파일명으로 쓸 수 없는 id는 export되지 않으므로 후보에서 제외.
        """
        index = self.store.asset_index()
        candidates: list[SourceRecord] = []
        seen: set[str] = set()

        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)
            if not is_safe_record_id(record.id):
                logger.warning(f"Not a candidate (id is not usable as a file name): id={record.id!r}")
                continue
            if record.id in index or self.store.asset_exists(resolve_asset_path(record).src):
                candidates.append(record)
            else:
                logger.debug(f"Not a candidate (no local asset): id={record.id}")

        return candidates

    def is_safe_object_path(self, object_path: str | None) -> bool:
        if not object_path:
            return False
        return object_path.startswith(self.object_prefix)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def cleanup(
        self,
        mode: CleanupMode,
        dry_run: bool,
        cancel_event: threading.Event | None = None,
    ) -> CleanupResult:
        """
        원격 정리 실행.

        Args:
            mode: none | table | storage | both
            dry_run: True면 로그만
            cancel_event: set되면 다음 배치 전에 중단

        Returns:
            CleanupResult

        Raises:
            ListingError: 승인 목록 조회 실패
        """
        result = CleanupResult(mode=mode.value, dry_run=dry_run)

        if mode is CleanupMode.NONE:
            logger.info("Cleanup mode is 'none', skipping")
            return result

        records = self.gateway.list_approved()
        candidates = self.find_candidates(records)
        result.candidates = [record.id for record in candidates]
        logger.info(
            f"Cleanup: mode={mode.value} dry_run={dry_run} "
            f"approved={len(records)} candidates={len(candidates)}"
        )

        if not candidates:
            return result

        if dry_run:
            self._log_dry_run(mode, candidates)
            return result

        def should_stop() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        blocked_ids: set[str] = set()
        if mode.deletes_storage:
            blocked_ids = self._delete_storage(candidates, result, should_stop)

        if mode.deletes_table and not result.cancelled:
            row_ids = [record.id for record in candidates if record.id not in blocked_ids]
            if blocked_ids:
                logger.warning(
                    f"Keeping {len(blocked_ids)} row(s) whose object delete failed: "
                    f"{sorted(blocked_ids)}"
                )
            self._delete_table(row_ids, result, should_stop)

        logger.info(
            f"Cleanup done: storage_deleted={result.storage_deleted} "
            f"(not found {result.storage_not_found}, refused {result.storage_refused}) "
            f"table_deleted={result.table_deleted} (not found {result.table_not_found}) "
            f"failed={len(result.failures)}"
        )
        return result

    def _log_dry_run(self, mode: CleanupMode, candidates: list[SourceRecord]) -> None:
        for record in candidates:
            if mode.deletes_storage:
                if self.is_safe_object_path(record.object_path):
                    logger.info(f"[DRY-RUN] would delete object: {record.object_path} (id={record.id})")
                else:
                    logger.info(f"[DRY-RUN] would refuse object outside '{self.object_prefix}': {record.object_path} (id={record.id})")
            if mode.deletes_table:
                logger.info(f"[DRY-RUN] would delete row: id={record.id}")

    def _delete_storage(
        self,
        candidates: list[SourceRecord],
        result: CleanupResult,
        should_stop: Callable[[], bool],
    ) -> set[str]:
        """
        Storage 객체 삭제.

        Returns:
            행 삭제에서 제외할 id (객체 삭제 실패/미처리)
        """
        path_to_id: dict[str, str] = {}
        blocked: set[str] = set()

        for record in candidates:
            if not record.object_path:
                continue
            if not self.is_safe_object_path(record.object_path):
                logger.warning(
                    f"Refusing to delete object outside '{self.object_prefix}': "
                    f"{record.object_path} (id={record.id})"
                )
                result.storage_refused += 1
                continue
            path_to_id[record.object_path] = record.id

        outcome = run_batches_with_fallback(
            list(path_to_id),
            self.storage_batch_size,
            self.gateway.delete_objects,
            self.gateway.delete_object,
            exceptions=(PipelineError,),
            should_stop=should_stop,
        )

        for delete in outcome.results:
            result.storage_deleted += len(delete.deleted)
            result.storage_not_found += len(delete.not_found)
        for path, error in outcome.failed:
            record_id = path_to_id[path]
            blocked.add(record_id)
            result.failures.append(_failure(record_id, error, "cleanup-storage"))
        if outcome.cancelled:
            result.cancelled = True
            blocked.update(path_to_id[path] for path in outcome.pending)

        return blocked

    def _delete_table(
        self,
        row_ids: list[str],
        result: CleanupResult,
        should_stop: Callable[[], bool],
    ) -> None:
        outcome = run_batches_with_fallback(
            row_ids,
            self.table_batch_size,
            self.gateway.delete_records,
            self.gateway.delete_record,
            exceptions=(PipelineError,),
            should_stop=should_stop,
        )

        for delete in outcome.results:
            result.table_deleted += len(delete.deleted)
            result.table_not_found += len(delete.not_found)
        for record_id, error in outcome.failed:
            result.failures.append(_failure(record_id, error, "cleanup-table"))
        if outcome.cancelled:
            result.cancelled = True


def _failure(record_id: str, error: Exception, stage: str) -> ItemFailure:
    code = getattr(error, "code", type(error).__name__)
    return ItemFailure(id=record_id, code=code, error=str(error), stage=stage)

