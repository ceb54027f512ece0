"""
Supabase Gateway: PostgREST(테이블) + Storage API를 httpx로 호출.

- 모든 요청에 timeout 적용 (httpx.Timeout)
- 일시적 실패(전송 오류, 429, 5xx)는 지수 백오프 재시도
- 서비스 키는 로그에 절대 남기지 않음 (길이/개행 여부만)
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from src.domain.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_TIMEOUT_SECONDS,
    RECORD_COLUMNS,
)
from src.domain.errors import (
    ErrorCodes,
    RemoteDeleteError,
    RemoteDownloadError,
    RemoteQueryError,
)
from src.domain.schemas import DeleteOutcome, RecordStatus, SourceRecord
from src.gateway.base import RemoteGateway
from src.utils.retry import RetryableError, retry_with_exponential_backoff

logger = logging.getLogger(__name__)


def _body_snippet(response: httpx.Response, limit: int = 200) -> str:
    """에러 메시지용 응답 본문 일부."""
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return "<binary>"
    return text[:limit]


def is_not_found(response: httpx.Response) -> bool:
    """
    not found 판정.

    Storage API는 404 대신 400 + {"statusCode": "404"}를 돌려주기도 한다.
    """
    if response.status_code == 404:
        return True
    if response.status_code != 400:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    code = str(body.get("statusCode") or body.get("status") or "")
    message = f"{body.get('error', '')} {body.get('message', '')}".lower()
    return code == "404" or "not found" in message or "not_found" in message


def _in_filter(values: list[str]) -> str:
    """PostgREST in.(...) 필터 (값은 항상 따옴표로 감쌈)."""
    quoted = ",".join('"' + v.replace("\\", "\\\\").replace('"', '\\"') + '"' for v in values)
    return f"in.({quoted})"


class SupabaseGateway(RemoteGateway):
    """Supabase REST 기반 RemoteGateway."""

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str,
        table: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Any = None,
    ):
        """
        Args:
            url: 프로젝트 URL (https://<ref>.supabase.co)
            service_key: service role key
            bucket: Storage 버킷 이름
            table: 사진 테이블 이름
            timeout: 요청별 timeout(초)
            page_size: 목록 조회 페이지 크기
            max_retries: 일시적 실패 재시도 횟수
            retry_delay: 첫 재시도 대기(초)
            transport: 주입할 httpx transport (테스트용 MockTransport)
            sleep: 재시도 대기 함수 (테스트용)
        """
        self.url = url.strip().rstrip("/")
        self.bucket = bucket
        self.table = table
        self.page_size = page_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._key_len = len(service_key)
        self._key_has_newline = "\n" in service_key

        self.client = httpx.Client(
            base_url=self.url,
            headers={
                "apikey": service_key.strip(),
                "Authorization": f"Bearer {service_key.strip()}",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "SupabaseGateway":
        """PipelineSettings → SupabaseGateway."""
        return cls(
            url=settings.supabase_url,
            service_key=settings.service_role_key,
            bucket=settings.bucket,
            table=settings.table,
            timeout=settings.timeout_seconds,
            page_size=settings.page_size,
            max_retries=settings.max_retries,
        )

    def close(self) -> None:
        self.client.close()

    def describe(self) -> dict[str, Any]:
        """로그용 연결 정보 (키 내용 제외)."""
        return {
            "url": self.url,
            "bucket": self.bucket,
            "table": self.table,
            "key_len": self._key_len,
            "key_has_newline": self._key_has_newline,
        }

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """요청 1건 (일시적 실패는 재시도, 소진 시 RetryableError)."""

        def send_once() -> httpx.Response:
            try:
                response = self.client.request(method, path, **kwargs)
            except httpx.RequestError as e:
                raise RetryableError(f"{type(e).__name__}: {e}") from e
            if response.status_code == 429 or response.status_code >= 500:
                raise RetryableError(
                    f"HTTP {response.status_code}: {_body_snippet(response)}"
                )
            return response

        retry_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        return retry_with_exponential_backoff(
            send_once,
            max_retries=self.max_retries,
            initial_delay=self.retry_delay,
            exceptions=(RetryableError,),
            **retry_kwargs,
        )

    def _object_url(self, object_path: str) -> str:
        return f"/storage/v1/object/{self.bucket}/{quote(object_path, safe='/')}"

    # -------------------------------------------------------------------------
    # Table
    # -------------------------------------------------------------------------

    def list_approved(self) -> list[SourceRecord]:
        records: list[SourceRecord] = []
        offset = 0

        while True:
            params = {
                "select": ",".join(RECORD_COLUMNS),
                "status": f"eq.{RecordStatus.APPROVED.value}",
                "order": "created_at.asc,id.asc",
                "limit": str(self.page_size),
                "offset": str(offset),
            }
            try:
                response = self._send("GET", f"/rest/v1/{self.table}", params=params)
            except RetryableError as e:
                raise RemoteQueryError(
                    ErrorCodes.LISTING_FAILED, table=self.table, error=str(e)
                ) from e

            if not response.is_success:
                raise RemoteQueryError(
                    ErrorCodes.LISTING_FAILED,
                    table=self.table,
                    status=response.status_code,
                    error=_body_snippet(response),
                )

            try:
                rows = response.json()
            except ValueError as e:
                raise RemoteQueryError(
                    ErrorCodes.LISTING_FAILED, table=self.table, error=f"invalid JSON: {e}"
                ) from e
            if not isinstance(rows, list):
                raise RemoteQueryError(
                    ErrorCodes.LISTING_FAILED, table=self.table, error="expected a JSON array"
                )

            for row in rows:
                if not isinstance(row, dict) or row.get("id") is None:
                    logger.warning(f"Skipping malformed row: {row!r}")
                    continue
                record = SourceRecord.from_row(row)
                if record.status != RecordStatus.APPROVED.value:
                    logger.warning(f"Skipping non-approved row id={record.id} status={record.status}")
                    continue
                records.append(record)

            # 서버 max-rows가 page_size보다 작으면 페이지가 짧게 온다. 빈 페이지에서만 종료
            if not rows:
                break
            offset += len(rows)

        logger.info(f"Approved rows: {len(records)}")
        return records

    def _delete_rows(self, filter_value: str, requested: list[str]) -> DeleteOutcome:
        """승인 상태인 행만 삭제하고 삭제된 id를 돌려받는다."""
        params = {
            "id": filter_value,
            "status": f"eq.{RecordStatus.APPROVED.value}",
            "select": "id",
        }
        try:
            response = self._send(
                "DELETE",
                f"/rest/v1/{self.table}",
                params=params,
                headers={"Prefer": "return=representation"},
            )
        except RetryableError as e:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED, table=self.table, ids=requested, error=str(e)
            ) from e

        if not response.is_success:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED,
                table=self.table,
                ids=requested,
                status=response.status_code,
                error=_body_snippet(response),
            )

        deleted_ids: set[str] = set()
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = []
            if isinstance(body, list):
                deleted_ids = {str(row["id"]) for row in body if isinstance(row, dict) and "id" in row}

        return DeleteOutcome(
            deleted=[rid for rid in requested if rid in deleted_ids],
            not_found=[rid for rid in requested if rid not in deleted_ids],
        )

    def delete_records(self, record_ids: list[str]) -> DeleteOutcome:
        if not record_ids:
            return DeleteOutcome()
        return self._delete_rows(_in_filter(record_ids), list(record_ids))

    def delete_record(self, record_id: str) -> DeleteOutcome:
        return self._delete_rows(f"eq.{record_id}", [record_id])

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    def download_object(self, object_path: str) -> bytes:
        try:
            response = self._send("GET", self._object_url(object_path))
        except RetryableError as e:
            raise RemoteDownloadError(
                ErrorCodes.DOWNLOAD_FAILED, object_path=object_path, error=str(e)
            ) from e

        if is_not_found(response):
            raise RemoteDownloadError(ErrorCodes.OBJECT_NOT_FOUND, object_path=object_path)
        if not response.is_success:
            raise RemoteDownloadError(
                ErrorCodes.DOWNLOAD_FAILED,
                object_path=object_path,
                status=response.status_code,
                error=_body_snippet(response),
            )
        return response.content

    def delete_objects(self, object_paths: list[str]) -> DeleteOutcome:
        if not object_paths:
            return DeleteOutcome()
        try:
            response = self._send(
                "DELETE",
                f"/storage/v1/object/{self.bucket}",
                json={"prefixes": list(object_paths)},
            )
        except RetryableError as e:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED, bucket=self.bucket, count=len(object_paths), error=str(e)
            ) from e

        if not response.is_success:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED,
                bucket=self.bucket,
                count=len(object_paths),
                status=response.status_code,
                error=_body_snippet(response),
            )

        try:
            body = response.json()
        except ValueError:
            body = []
        removed = {
            str(obj.get("name"))
            for obj in (body if isinstance(body, list) else [])
            if isinstance(obj, dict)
        }
        # 응답에 없는 경로 = 이미 없던 객체
        return DeleteOutcome(
            deleted=[p for p in object_paths if p in removed],
            not_found=[p for p in object_paths if p not in removed],
        )

    def delete_object(self, object_path: str) -> DeleteOutcome:
        try:
            response = self._send("DELETE", self._object_url(object_path))
        except RetryableError as e:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED, object_path=object_path, error=str(e)
            ) from e

        if is_not_found(response):
            return DeleteOutcome(not_found=[object_path])
        if not response.is_success:
            raise RemoteDeleteError(
                ErrorCodes.DELETE_FAILED,
                object_path=object_path,
                status=response.status_code,
                error=_body_snippet(response),
            )
        return DeleteOutcome(deleted=[object_path])
