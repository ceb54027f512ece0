"""
Core layer: 로컬 미러 안전 핵심 모듈.

이 모듈만 건드리면 갤러리 데이터 사고 → 가장 보수적으로 관리

역할:
- 경로 해석 (순수 함수), 원자적 쓰기, 락, 매니페스트 재생성, 실행 보고서
"""

from .ids import generate_run_id
from .logging import complete_run_log, create_run_log, save_run_log
from .manifest import ManifestBuilder
from .mirror import MirrorStore, atomic_write_bytes, atomic_write_json
from .paths import parse_asset_src, resolve_asset_path, slugify_category

__all__ = [
    # paths
    "resolve_asset_path",
    "slugify_category",
    "parse_asset_src",
    # mirror
    "MirrorStore",
    "atomic_write_bytes",
    "atomic_write_json",
    # manifest
    "ManifestBuilder",
    # ids
    "generate_run_id",
    # logging
    "create_run_log",
    "complete_run_log",
    "save_run_log",
]
