"""
test_pipeline.py - Pipeline Driver 테스트

DoD:
- 모드별 단계 조립 (export / export-cleanup / cleanup-only / rebuild-only)
- 치명적 에러: 설정(1), 목록 조회(2), 락 경합(1)
- 항목 실패는 partial, 종료 코드 0
- 취소 → cancelled, 130, 매니페스트는 재생성, 정리는 생략
"""

import json
import threading
from dataclasses import replace
from pathlib import Path

import pytest

from src.app.config import PipelineSettings
from src.core.mirror import MirrorStore
from src.domain.errors import ErrorCodes
from src.domain.schemas import CleanupMode, RunMode
from src.services.pipeline import (
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_LISTING_ERROR,
    EXIT_OK,
    PipelineDriver,
    exit_code_for,
    run_pipeline,
)


@pytest.fixture
def driver_for(gateway):
    """FakeGateway를 주입한 PipelineDriver 팩토리."""

    def _driver(settings: PipelineSettings) -> PipelineDriver:
        return PipelineDriver(settings, gateway_factory=lambda _settings: gateway)

    return _driver


def _manifest_ids(store: MirrorStore) -> list[str]:
    return [item["id"] for item in json.loads(store.manifest_path.read_text(encoding="utf-8"))]


# =============================================================================
# 모드 테스트
# =============================================================================


class TestRunModes:
    """실행 모드별 단계."""

    def test_export_mode(self, gateway, settings, driver_for, make_record, store):
        gateway.add(make_record("1"))
        gateway.add(make_record("2"))
        driver = driver_for(settings)

        run_log = driver.run(RunMode.EXPORT)

        assert run_log.result == "success"
        assert run_log.export["downloaded"] == 2
        assert run_log.manifest["entries"] == 2
        assert run_log.cleanup is None
        assert _manifest_ids(store) == ["1", "2"]
        assert exit_code_for(run_log) == EXIT_OK
        assert gateway.closed

    def test_export_mode_never_cleans_up(self, gateway, settings, driver_for, make_record):
        gateway.add(make_record("1"))
        settings = replace(settings, cleanup_mode=CleanupMode.BOTH, cleanup_dry_run=False)

        run_log = driver_for(settings).run(RunMode.EXPORT)

        assert run_log.cleanup_mode == "none"
        assert gateway.mutation_calls == []

    def test_export_cleanup_mode(self, gateway, settings, driver_for, make_record):
        gateway.add(make_record("1"))
        settings = replace(settings, cleanup_mode=CleanupMode.BOTH, cleanup_dry_run=False)

        run_log = driver_for(settings).run(RunMode.EXPORT_CLEANUP)

        assert run_log.cleanup["storage_deleted"] == 1
        assert run_log.cleanup["table_deleted"] == 1
        assert gateway.records == []
        # 정리는 새로 조회한 목록 기준
        assert gateway.calls_of("list_approved") == [None, None]

    def test_cleanup_defaults_to_dry_run(self, gateway, settings, driver_for, make_record):
        gateway.add(make_record("1"))
        settings = replace(settings, cleanup_mode=CleanupMode.BOTH)

        run_log = driver_for(settings).run(RunMode.EXPORT_CLEANUP)

        assert run_log.dry_run is True
        assert run_log.cleanup["dry_run"] is True
        assert run_log.cleanup["candidates"] == 1
        assert gateway.mutation_calls == []

    def test_cleanup_only_skips_export(self, gateway, settings, driver_for, make_record, store):
        gateway.add(make_record("1"))
        store.write_asset("full/2024/match-day/1.jpg", b"img")
        settings = replace(settings, cleanup_mode=CleanupMode.TABLE, cleanup_dry_run=False)

        run_log = driver_for(settings).run(RunMode.CLEANUP_ONLY)

        assert run_log.export is None
        assert gateway.calls_of("download_object") == []
        assert run_log.manifest["entries"] == 1
        assert run_log.cleanup["table_deleted"] == 1

    def test_rebuild_only_needs_no_credentials(self, tmp_path: Path, store):
        store.write_asset("full/2024/team/1.jpg", b"img")
        settings = PipelineSettings(assets_dir=store.root, logs_dir=tmp_path / "logs")

        def no_remote(_settings):
            raise AssertionError("rebuild-only must not touch the remote")

        run_log = PipelineDriver(settings, gateway_factory=no_remote).run(RunMode.REBUILD_ONLY)

        assert run_log.result == "success"
        assert _manifest_ids(store) == ["1"]

    def test_report_saved(self, gateway, settings, driver_for, make_record):
        gateway.add(make_record("1"))
        driver = driver_for(settings)

        run_log = driver.run(RunMode.EXPORT)

        assert driver.report_path == settings.logs_dir / f"run_{run_log.run_id}.json"
        data = json.loads(driver.report_path.read_text(encoding="utf-8"))
        assert data["result"] == "success"
        assert data["mode"] == "export"

    def test_run_pipeline_shortcut(self, gateway, settings, make_record):
        gateway.add(make_record("1"))

        run_log = run_pipeline(settings, RunMode.EXPORT, gateway_factory=lambda _s: gateway)

        assert run_log.export["downloaded"] == 1


# =============================================================================
# 에러 / 종료 코드 테스트
# =============================================================================


class TestFatalErrors:
    """치명적 에러는 보고서에 기록 후 중단."""

    def test_missing_credentials(self, tmp_path: Path, store):
        settings = PipelineSettings(assets_dir=store.root, logs_dir=tmp_path / "logs")
        created: list[bool] = []

        def factory(_settings):
            created.append(True)
            raise AssertionError("gateway must not be created")

        driver = PipelineDriver(settings, gateway_factory=factory)
        run_log = driver.run(RunMode.EXPORT)

        assert run_log.result == "failed"
        assert run_log.error_code == ErrorCodes.MISSING_CREDENTIALS
        assert exit_code_for(run_log) == EXIT_CONFIG_ERROR
        assert created == []
        assert driver.report_path is None
        assert not store.root.exists()

    def test_listing_failure(self, gateway, settings, driver_for, store):
        gateway.list_error = True
        driver = driver_for(settings)

        run_log = driver.run(RunMode.EXPORT)

        assert run_log.result == "failed"
        assert run_log.error_code == ErrorCodes.LISTING_FAILED
        assert exit_code_for(run_log) == EXIT_LISTING_ERROR
        assert not store.manifest_path.exists()
        assert driver.report_path is not None and driver.report_path.exists()

    def test_listing_failure_in_cleanup_only(self, gateway, settings, driver_for):
        gateway.list_error = True
        settings = replace(settings, cleanup_mode=CleanupMode.BOTH, cleanup_dry_run=False)

        run_log = driver_for(settings).run(RunMode.CLEANUP_ONLY)

        assert exit_code_for(run_log) == EXIT_LISTING_ERROR
        assert gateway.mutation_calls == []

    def test_lock_held_by_other_run(self, gateway, settings, driver_for):
        driver = driver_for(settings)
        driver.store.LOCK_TIMEOUT = 0.05

        with MirrorStore(settings.assets_dir).lock():
            run_log = driver.run(RunMode.EXPORT)

        assert run_log.error_code == ErrorCodes.MIRROR_LOCKED
        assert exit_code_for(run_log) == EXIT_CONFIG_ERROR
        assert gateway.calls == []

    def test_item_failures_are_partial_success(self, gateway, settings, driver_for, make_record):
        gateway.add(make_record("1"))
        gateway.add(make_record("2"), data=None)

        run_log = driver_for(settings).run(RunMode.EXPORT)

        assert run_log.result == "partial"
        assert [f.id for f in run_log.failures] == ["2"]
        assert exit_code_for(run_log) == EXIT_OK


class TestCancellation:
    """취소된 실행도 재시작 가능한 상태로 끝난다."""

    def test_cancel_during_export(self, gateway, settings, driver_for, make_record, store):
        for rid in ("1", "2", "3"):
            gateway.add(make_record(rid))
        settings = replace(settings, cleanup_mode=CleanupMode.BOTH, cleanup_dry_run=False)
        cancel = threading.Event()
        real_download = gateway.download_object

        def download(path: str) -> bytes:
            cancel.set()
            return real_download(path)

        gateway.download_object = download
        run_log = driver_for(settings).run(RunMode.EXPORT_CLEANUP, cancel)

        assert run_log.result == "cancelled"
        assert exit_code_for(run_log) == EXIT_CANCELLED
        assert _manifest_ids(store) == ["1"]
        assert run_log.cleanup is None
        assert gateway.mutation_calls == []
