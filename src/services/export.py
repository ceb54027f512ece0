"""
Exporter: 승인 레코드 → 로컬 이미지 + sidecar

규칙:
- 순차 처리 (created_at 순), 레코드마다 취소 확인
- sidecar는 항상 재작성 (이미지를 다시 받지 않아도 메타 변경은 반영)
- 같은 id의 이미지가 트리 어딘가에 있으면 skip (id당 다운로드 최대 1회)
- 다운로드/쓰기 실패는 기록만 하고 다음 레코드로
- object_path 없는 레코드는 경고 후 skip (실패 아님)
"""

import logging
import threading
from collections.abc import Iterable

from src.core.mirror import MirrorStore
from src.core.paths import AssetLocation, is_safe_record_id, resolve_asset_path
from src.domain.errors import ErrorCodes, TransferError
from src.domain.schemas import ExportResult, ItemFailure, MetaSidecar, ResolvedAsset, SourceRecord
from src.gateway.base import RemoteGateway

logger = logging.getLogger(__name__)


class Exporter:
    """
    승인 레코드 미러링.

    멱등: 같은 레코드 집합으로 두 번 실행하면 두 번째는 downloaded=0.
    """

    def __init__(self, gateway: RemoteGateway, store: MirrorStore):
        self.gateway = gateway
        self.store = store

    def export(
        self,
        records: Iterable[SourceRecord],
        cancel_event: threading.Event | None = None,
    ) -> ExportResult:
        """
        레코드 목록 export.

        Args:
            records: list_approved() 결과 (created_at 오름차순)
            cancel_event: set되면 다음 레코드 전에 중단

        Returns:
            ExportResult
        """
        result = ExportResult()
        index = self.store.asset_index()
        seen: set[str] = set()

        for record in records:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Export cancelled before record id={record.id}")
                result.cancelled = True
                break

            if record.id in seen:
                self._fail(result, record, ErrorCodes.DUPLICATE_RECORD_ID, "duplicate id in this run")
                continue
            seen.add(record.id)

            if not is_safe_record_id(record.id):
                self._fail(result, record, ErrorCodes.INVALID_RECORD_ID, "id is not usable as a file name")
                continue

            if not record.object_path:
                logger.warning(f"Skipping id={record.id}: no object path")
                result.missing_object += 1
                continue

            self._export_one(record, record.object_path, index, result)

        logger.info(
            f"Export: downloaded={result.downloaded} skipped={result.skipped} "
            f"meta={result.meta_written} failed={len(result.failures)}"
        )
        return result

    def _export_one(
        self,
        record: SourceRecord,
        object_path: str,
        index: dict[str, AssetLocation],
        result: ExportResult,
    ) -> None:
        """레코드 1건 처리 (실패는 result에 기록)."""
        resolved = resolve_asset_path(record)
        existing: AssetLocation | ResolvedAsset | None = index.get(record.id)
        if existing is None and self.store.asset_exists(resolved.src):
            existing = resolved
        src = existing.src if existing is not None else resolved.src

        try:
            self.store.ensure_parent(src)
            self.store.write_sidecar(
                MetaSidecar(
                    id=record.id,
                    category=record.category or resolved.category_slug,
                    uploader_name=record.uploader_name,
                    taken_at=record.taken_at or "",
                    people=record.people or "",
                    year=resolved.year,
                    src=src,
                    source_object_path=record.object_path,
                )
            )
            result.meta_written += 1
        except OSError as e:
            self._fail(result, record, ErrorCodes.WRITE_FAILED, f"sidecar: {e}")
            return

        if existing is not None:
            if existing.src != resolved.src:
                logger.info(f"Keeping existing asset for id={record.id} at {existing.src} (resolved {resolved.src})")
            logger.debug(f"skip existing: {src}")
            result.skipped += 1
            return

        try:
            data = self.gateway.download_object(object_path)
        except TransferError as e:
            self._fail(result, record, e.code, str(e))
            return

        try:
            self.store.write_asset(src, data)
        except OSError as e:
            self._fail(result, record, ErrorCodes.WRITE_FAILED, str(e))
            return

        logger.info(f"download: {object_path} -> {src}")
        index[record.id] = resolved
        result.downloaded += 1

    @staticmethod
    def _fail(result: ExportResult, record: SourceRecord, code: str, error: str) -> None:
        logger.error(f"Export failed for id={record.id} [{code}]: {error}")
        result.failures.append(ItemFailure(id=record.id, code=code, error=error, stage="export"))
