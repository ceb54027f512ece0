#!/usr/bin/env python3
"""
gallery-export - 승인 사진 export / 매니페스트 재생성 / 원격 정리

사용법:
    # 기본 실행: export + 매니페스트 재생성
    gallery-export

    # export 후 원격 정리 (CLEANUP_MODE, CLEANUP_DRY_RUN 기준, 기본 dry-run)
    gallery-export --cleanup --mode both

    # 실제 삭제
    gallery-export --cleanup-only --mode both --execute

    # 매니페스트만 재생성 (네트워크 없음)
    gallery-export --rebuild-only --assets-dir ./assets

종료 코드:
    0 성공 (항목 단위 실패 포함), 1 설정 오류, 2 목록 조회 실패, 130 취소
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from src.app.config import load_settings, parse_cleanup_mode
from src.core.logging import format_summary, setup_logging
from src.domain.errors import ConfigurationError
from src.domain.schemas import RunMode
from src.services.pipeline import EXIT_CONFIG_ERROR, GatewayFactory, PipelineDriver, exit_code_for

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gallery-export",
        description="승인된 사진을 로컬 assets/로 export하고 매니페스트를 재생성합니다.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
예시:
  gallery-export                                  # export + 재생성
  gallery-export --cleanup --mode table           # export 후 DB 행 정리 (dry-run)
  gallery-export --cleanup-only --mode both --execute
  gallery-export --rebuild-only
        """,
    )

    run_mode = parser.add_mutually_exclusive_group()
    run_mode.add_argument(
        "--cleanup",
        dest="run_mode",
        action="store_const",
        const=RunMode.EXPORT_CLEANUP,
        help="export 후 원격 정리",
    )
    run_mode.add_argument(
        "--cleanup-only",
        dest="run_mode",
        action="store_const",
        const=RunMode.CLEANUP_ONLY,
        help="export 없이 재생성 + 원격 정리",
    )
    run_mode.add_argument(
        "--rebuild-only",
        dest="run_mode",
        action="store_const",
        const=RunMode.REBUILD_ONLY,
        help="매니페스트만 재생성 (자격 증명 불필요)",
    )

    parser.add_argument(
        "--assets-dir",
        type=Path,
        default=None,
        help="로컬 미러 루트 (기본: EXPORT_ASSETS_DIR 또는 assets)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="설정 파일 경로 (기본: default.yaml)",
    )
    parser.add_argument(
        "--mode",
        default=None,
        help="정리 모드: none | table | storage | both (기본: CLEANUP_MODE)",
    )

    dry_run = parser.add_mutually_exclusive_group()
    dry_run.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_const",
        const=True,
        help="삭제하지 않고 대상만 출력",
    )
    dry_run.add_argument(
        "--execute",
        dest="dry_run",
        action="store_const",
        const=False,
        help="실제 삭제 실행",
    )

    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="로그 레벨 (기본: LOG_LEVEL 또는 INFO)",
    )
    parser.set_defaults(run_mode=RunMode.EXPORT, dry_run=None)
    return parser


def install_signal_handlers(cancel_event: threading.Event) -> dict[int, object]:
    """SIGINT/SIGTERM → cancel_event. 이전 핸들러를 반환."""

    def handle(signum: int, frame: object) -> None:
        logger.warning(f"Signal {signum} received, finishing current item and stopping")
        cancel_event.set()

    previous: dict[int, object] = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle)
    return previous


def restore_signal_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)  # type: ignore[arg-type]


def main(argv: list[str] | None = None, gateway_factory: GatewayFactory | None = None) -> int:
    """
    CLI 진입점.

    Args:
        argv: 인자 목록 (None이면 sys.argv)
        gateway_factory: 원격 게이트웨이 생성 함수 (테스트용 주입)

    Returns:
        종료 코드
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(config_path=args.config)
        settings = settings.with_overrides(
            assets_dir=args.assets_dir,
            cleanup_mode=parse_cleanup_mode(args.mode) if args.mode is not None else None,
            cleanup_dry_run=args.dry_run,
            log_level=args.log_level,
        )
    except ConfigurationError as e:
        setup_logging("INFO")
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(settings.log_level)

    if gateway_factory is None:
        driver = PipelineDriver(settings)
    else:
        driver = PipelineDriver(settings, gateway_factory)

    cancel_event = threading.Event()
    previous = install_signal_handlers(cancel_event)
    try:
        run_log = driver.run(args.run_mode, cancel_event)
    finally:
        restore_signal_handlers(previous)

    print()
    for line in format_summary(run_log):
        print(line)
    if driver.report_path is not None:
        print(f"  report:   {driver.report_path}")

    return exit_code_for(run_log)


if __name__ == "__main__":
    sys.exit(main())
