"""
Run logging: 실행 보고서 (logs/run_<run_id>.json) + 콘솔 로깅 설정

규칙:
- 항목 단위 실패는 숨기지 않고 보고서에 모두 기록
- result: success | partial(항목 실패 있음) | failed(치명적 에러) | cancelled
"""

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from src.core.ids import generate_run_id
from src.core.mirror import atomic_write_json
from src.domain.errors import PipelineError
from src.domain.schemas import CleanupResult, ExportResult, ManifestBuildResult, RunLog

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    """콘솔 로깅 설정 (CLI 시작 시 1회)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)


# =============================================================================
# Run Log Management
# =============================================================================


def create_run_log(mode: str, dry_run: bool, cleanup_mode: str) -> RunLog:
    """
    새 RunLog 생성.

    Args:
        mode: 실행 모드 (export, export-cleanup, ...)
        dry_run: cleanup dry-run 여부
        cleanup_mode: cleanup 모드

    Returns:
        초기화된 RunLog
    """
    return RunLog(
        run_id=generate_run_id(),
        mode=mode,
        started_at=datetime.now(UTC).isoformat(),
        dry_run=dry_run,
        cleanup_mode=cleanup_mode,
    )


def record_export(run_log: RunLog, result: ExportResult) -> None:
    run_log.export = result.to_dict()
    run_log.failures.extend(result.failures)


def record_manifest(run_log: RunLog, result: ManifestBuildResult) -> None:
    run_log.manifest = result.to_dict()


def record_cleanup(run_log: RunLog, result: CleanupResult) -> None:
    run_log.cleanup = result.to_dict()
    run_log.failures.extend(result.failures)


def complete_run_log(
    run_log: RunLog,
    error: PipelineError | None = None,
    cancelled: bool = False,
) -> None:
    """
    RunLog 완료 처리.

    Args:
        run_log: RunLog 인스턴스
        error: 실행을 중단시킨 치명적 에러
        cancelled: 취소 여부
    """
    run_log.finished_at = datetime.now(UTC).isoformat()

    if error is not None:
        run_log.result = "failed"
        run_log.error_code = error.code
        run_log.error_context = error.to_dict()
    elif cancelled:
        run_log.result = "cancelled"
    elif run_log.failures:
        run_log.result = "partial"
    else:
        run_log.result = "success"


def save_run_log(run_log: RunLog, logs_dir: Path) -> Path:
    """
    RunLog를 파일로 저장.

    Args:
        run_log: RunLog 인스턴스
        logs_dir: logs/ 디렉터리 경로

    Returns:
        저장된 파일 경로
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"run_{run_log.run_id}.json"
    atomic_write_json(log_path, run_log.to_dict())
    return log_path


def format_summary(run_log: RunLog) -> list[str]:
    """콘솔 출력용 요약 (다운로드/스킵/실패/정리 건수)."""
    lines = [f"Run {run_log.run_id} ({run_log.mode}): {run_log.result}"]

    if run_log.export is not None:
        e = run_log.export
        lines.append(
            f"  export:   downloaded={e['downloaded']} skipped={e['skipped']} "
            f"meta={e['meta_written']} no_object={e['missing_object']} failed={e['failed']}"
        )
    if run_log.manifest is not None:
        m = run_log.manifest
        lines.append(
            f"  manifest: entries={m['entries']} added={m['added']} "
            f"removed={m['removed']} dropped={m['dropped']}"
        )
    if run_log.cleanup is not None:
        c = run_log.cleanup
        prefix = "[DRY-RUN] " if c["dry_run"] else ""
        lines.append(
            f"  cleanup:  {prefix}mode={c['mode']} candidates={c['candidates']} "
            f"storage_deleted={c['storage_deleted']} table_deleted={c['table_deleted']} "
            f"not_found={c['storage_not_found'] + c['table_not_found']} "
            f"refused={c['storage_refused']} failed={c['failed']}"
        )
    for failure in run_log.failures[:5]:
        lines.append(f"    - {failure.stage} id={failure.id} [{failure.code}] {failure.error}")
    if len(run_log.failures) > 5:
        lines.append(f"    ... and {len(run_log.failures) - 5} more (see run report)")
    return lines
