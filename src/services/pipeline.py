"""
Pipeline Driver: 실행 모드별 단계 조립

모드:
- export:          목록 조회 → export → 매니페스트 재생성
- export-cleanup:  export → 재생성 → 원격 정리
- cleanup-only:    재생성 (디스크 기준) → 원격 정리
- rebuild-only:    재생성만 (자격 증명 불필요)

규칙:
- 실행 동안 <assets>/.export.lock 독점
- 치명적: 설정 오류, 목록 조회 실패, 락 경합 → 보고서에 기록 후 중단
- 항목 단위 실패는 RunLog에 모으고 계속
- 취소 후에도 매니페스트는 디스크 상태로 재생성 (재시작 가능한 상태 유지)
"""

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from src.app.config import PipelineSettings
from src.core.logging import (
    complete_run_log,
    create_run_log,
    record_cleanup,
    record_export,
    record_manifest,
    save_run_log,
)
from src.core.manifest import ManifestBuilder
from src.core.mirror import MirrorStore
from src.domain.errors import ConfigurationError, ErrorCodes, ListingError, MirrorLockError
from src.domain.schemas import CleanupMode, RunLog, RunMode
from src.gateway.base import RemoteGateway
from src.gateway.supabase import SupabaseGateway
from src.services.cleanup import CleanupEngine
from src.services.export import Exporter

logger = logging.getLogger(__name__)

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_LISTING_ERROR = 2
EXIT_CANCELLED = 130


def exit_code_for(run_log: RunLog) -> int:
    """
    RunLog → 프로세스 종료 코드.

    항목 단위 실패(partial)는 0. 운영자는 요약/보고서로 확인.
    """
    if run_log.result == "cancelled":
        return EXIT_CANCELLED
    if run_log.result == "failed":
        if run_log.error_code == ErrorCodes.LISTING_FAILED:
            return EXIT_LISTING_ERROR
        return EXIT_CONFIG_ERROR
    return EXIT_OK


GatewayFactory = Callable[[PipelineSettings], RemoteGateway]


class PipelineDriver:
    """
    단계 조립 및 실행.

    Usage:
        driver = PipelineDriver(settings)
        run_log = driver.run(RunMode.EXPORT)
    """

    def __init__(
        self,
        settings: PipelineSettings,
        gateway_factory: GatewayFactory = SupabaseGateway.from_settings,
    ):
        self.settings = settings
        self.gateway_factory = gateway_factory
        self.store = MirrorStore(settings.assets_dir)
        self.report_path: Path | None = None

    def cleanup_mode_for(self, run_mode: RunMode) -> CleanupMode:
        if run_mode in (RunMode.EXPORT_CLEANUP, RunMode.CLEANUP_ONLY):
            return self.settings.cleanup_mode
        return CleanupMode.NONE

    def run(
        self,
        run_mode: RunMode,
        cancel_event: threading.Event | None = None,
    ) -> RunLog:
        """
        파이프라인 1회 실행.

        Args:
            run_mode: 실행 모드
            cancel_event: set되면 다음 레코드/배치 전에 중단

        Returns:
            완료된 RunLog (보고서는 logs_dir에 저장, 설정 오류 시 제외)
        """
        cleanup_mode = self.cleanup_mode_for(run_mode)
        run_log = create_run_log(
            mode=run_mode.value,
            dry_run=self.settings.cleanup_dry_run,
            cleanup_mode=cleanup_mode.value,
        )
        logger.info(
            f"Run {run_log.run_id}: mode={run_mode.value} assets={self.settings.assets_dir} "
            f"cleanup={cleanup_mode.value} dry_run={self.settings.cleanup_dry_run}"
        )

        if run_mode.needs_remote:
            try:
                self.settings.require_remote()
            except ConfigurationError as e:
                logger.error(f"Configuration error: {e}")
                complete_run_log(run_log, error=e)
                return run_log

        try:
            with self.store.lock():
                if run_mode.needs_remote:
                    with self.gateway_factory(self.settings) as gateway:
                        logger.info(f"Remote: {gateway.describe()}")
                        self._run_remote(run_mode, gateway, run_log, cleanup_mode, cancel_event)
                else:
                    self._rebuild(run_log)
        except (ListingError, MirrorLockError) as e:
            logger.error(f"Run aborted: {e}")
            complete_run_log(run_log, error=e)
        else:
            cancelled = cancel_event is not None and cancel_event.is_set()
            complete_run_log(run_log, cancelled=cancelled)

        self.report_path = save_run_log(run_log, self.settings.logs_dir)
        logger.info(f"Run report: {self.report_path}")
        return run_log

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _run_remote(
        self,
        run_mode: RunMode,
        gateway: RemoteGateway,
        run_log: RunLog,
        cleanup_mode: CleanupMode,
        cancel_event: threading.Event | None,
    ) -> None:
        if run_mode in (RunMode.EXPORT, RunMode.EXPORT_CLEANUP):
            records = gateway.list_approved()
            logger.info(f"Approved records: {len(records)}")
            export_result = Exporter(gateway, self.store).export(records, cancel_event)
            record_export(run_log, export_result)

        self._rebuild(run_log)

        if run_mode is RunMode.EXPORT:
            return
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Cancelled, skipping cleanup")
            return

        engine = CleanupEngine(
            gateway,
            self.store,
            object_prefix=self.settings.object_prefix,
            storage_batch_size=self.settings.storage_batch_size,
            table_batch_size=self.settings.table_batch_size,
        )
        cleanup_result = engine.cleanup(
            cleanup_mode,
            dry_run=self.settings.cleanup_dry_run,
            cancel_event=cancel_event,
        )
        record_cleanup(run_log, cleanup_result)

    def _rebuild(self, run_log: RunLog) -> None:
        manifest_result = ManifestBuilder(self.store).rebuild()
        record_manifest(run_log, manifest_result)


def run_pipeline(
    settings: PipelineSettings,
    run_mode: RunMode = RunMode.EXPORT,
    cancel_event: threading.Event | None = None,
    gateway_factory: GatewayFactory = SupabaseGateway.from_settings,
) -> RunLog:
    """PipelineDriver 단축 함수."""
    return PipelineDriver(settings, gateway_factory).run(run_mode, cancel_event)
