"""
ID 생성: run_id

- 실행(run)마다 새로 발급, 보고서 파일명에 사용
"""

import uuid
from datetime import UTC, datetime

from src.domain.constants import RUN_ID_PREFIX


def generate_run_id(now: datetime | None = None) -> str:
    """
    Run ID 생성.

    고유성 보장: UUID v4
    포맷: RUN-{timestamp}-{uuid[:8]}

    Returns:
        run_id 문자열
    """
    now = now or datetime.now(UTC)
    timestamp = now.strftime("%Y%m%d%H%M%S")
    unique = uuid.uuid4().hex[:8]

    return f"{RUN_ID_PREFIX}{timestamp}-{unique}"
