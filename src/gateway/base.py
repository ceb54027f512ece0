"""
Remote Data Gateway 추상 인터페이스.

- 백엔드(BaaS) 교체 가능하도록 추상화
- list_approved 실패는 치명적 (RemoteQueryError)
- download 실패는 항목 단위 (RemoteDownloadError)
- delete는 멱등: not found → 성공 (DeleteOutcome.not_found)
"""

from abc import ABC, abstractmethod
from typing import Any

from src.domain.schemas import DeleteOutcome, SourceRecord


class RemoteGateway(ABC):
    """원격 DB + 오브젝트 스토리지 접근."""

    @abstractmethod
    def list_approved(self) -> list[SourceRecord]:
        """
        승인된 레코드 목록 (created_at 오름차순).

        Raises:
            RemoteQueryError: 전송/인증/타임아웃 실패
        """

    @abstractmethod
    def download_object(self, object_path: str) -> bytes:
        """
        Storage 객체 다운로드.

        Raises:
            RemoteDownloadError: DOWNLOAD_FAILED, OBJECT_NOT_FOUND
        """

    @abstractmethod
    def delete_objects(self, object_paths: list[str]) -> DeleteOutcome:
        """
        Storage 객체 일괄 삭제.

        Raises:
            RemoteDeleteError: 배치 호출 실패 (호출자가 항목별로 재시도)
        """

    @abstractmethod
    def delete_object(self, object_path: str) -> DeleteOutcome:
        """Storage 객체 단건 삭제. not found → 성공."""

    @abstractmethod
    def delete_records(self, record_ids: list[str]) -> DeleteOutcome:
        """DB 행 일괄 삭제."""

    @abstractmethod
    def delete_record(self, record_id: str) -> DeleteOutcome:
        """DB 행 단건 삭제. not found → 성공."""

    def describe(self) -> dict[str, Any]:
        """로그용 연결 정보 (비밀 값 제외)."""
        return {}

    def close(self) -> None:
        """리소스 정리 (필요한 구현만)."""

    def __enter__(self) -> "RemoteGateway":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
