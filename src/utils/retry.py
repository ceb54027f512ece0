"""
재시도 로직 유틸리티.

- retry_with_exponential_backoff: 일시적 실패(전송 오류, 429/5xx) 자동 재시도
- run_batches_with_fallback: 2단계 정책 (배치 호출 → 실패한 배치만 항목별 재시도)
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class RetryableError(Exception):
    """재시도 가능한 에러."""

    pass


def retry_with_exponential_backoff(
    func: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (RetryableError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    지수 백오프를 사용한 재시도.

    Args:
        func: 재시도할 함수 (인자 없음, functools.partial 등으로 감싸서 전달)
        max_retries: 최대 재시도 횟수
        initial_delay: 초기 대기 시간(초)
        max_delay: 최대 대기 시간(초)
        exponential_base: 지수 백오프 기수
        exceptions: 재시도할 예외 타입들
        sleep: 대기 함수 (테스트에서 교체)

    Returns:
        func의 반환값

    Raises:
        마지막 시도에서 발생한 예외
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            result = func()
            if attempt > 0:
                logger.info(
                    f"Retry succeeded on attempt {attempt + 1}/{max_retries + 1}"
                )
            return result

        except exceptions as e:
            if attempt == max_retries:
                logger.error(
                    f"All {max_retries + 1} attempts failed. Last error: {e}"
                )
                raise

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )

            sleep(delay)

            # 지수 백오프
            delay = min(delay * exponential_base, max_delay)

    # Should never reach here
    msg = "Unexpected retry logic error"
    raise RuntimeError(msg)


# =============================================================================
# Two-tier Batch Policy
# =============================================================================


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """고정 크기 배치로 분할."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class BatchOutcome(Generic[T, R]):
    """배치 실행 결과."""
    results: list[R] = field(default_factory=list)
    failed: list[tuple[T, Exception]] = field(default_factory=list)
    pending: list[T] = field(default_factory=list)  # 취소로 처리되지 않은 항목
    batches: int = 0
    fallbacks: int = 0  # 항목별 재시도로 넘어간 배치 수

    @property
    def cancelled(self) -> bool:
        return bool(self.pending)


def run_batches_with_fallback(
    items: Sequence[T],
    batch_size: int,
    batch_func: Callable[[list[T]], R],
    item_func: Callable[[T], R],
    exceptions: tuple[type[Exception], ...] = (Exception,),
    should_stop: Callable[[], bool] | None = None,
) -> BatchOutcome[T, R]:
    """
    배치 호출 후 실패 시 항목별 fallback.

    한 항목의 실패가 나머지 항목을 막지 않도록:
    1. 배치 단위로 batch_func 호출
    2. 배치가 실패하면 해당 배치의 항목만 item_func로 하나씩 재시도
    3. 개별 실패는 failed에 기록하고 계속

    Args:
        items: 처리할 항목
        batch_size: 배치 크기
        batch_func: 배치 처리 함수
        item_func: 항목 처리 함수 (fallback)
        exceptions: 실패로 간주할 예외 타입들 (그 외는 전파)
        should_stop: 배치 사이 취소 확인

    Returns:
        BatchOutcome
    """
    outcome: BatchOutcome[T, R] = BatchOutcome()
    batches = chunked(items, batch_size)

    for index, batch in enumerate(batches):
        if should_stop is not None and should_stop():
            outcome.pending = [item for rest in batches[index:] for item in rest]
            logger.warning(f"Batch run cancelled, {len(outcome.pending)} item(s) left")
            break

        outcome.batches += 1
        try:
            outcome.results.append(batch_func(batch))
            continue
        except exceptions as e:
            logger.warning(
                f"Batch of {len(batch)} failed: {e}. Falling back to item-by-item"
            )
            outcome.fallbacks += 1

        for item in batch:
            try:
                outcome.results.append(item_func(item))
            except exceptions as e:
                logger.error(f"Item {item!r} failed: {e}")
                outcome.failed.append((item, e))

    return outcome
