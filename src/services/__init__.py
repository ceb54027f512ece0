"""
Pipeline Services.

역할:
- export: 승인 레코드 → 로컬 이미지 + sidecar
- cleanup: export 완료 항목의 원격 객체/행 삭제
- pipeline: 실행 모드별 단계 조립, 보고서 저장
"""

from .cleanup import CleanupEngine
from .export import Exporter
from .pipeline import PipelineDriver, exit_code_for, run_pipeline

__all__ = [
    "Exporter",
    "CleanupEngine",
    "PipelineDriver",
    "exit_code_for",
    "run_pipeline",
]
