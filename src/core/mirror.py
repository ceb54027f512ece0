"""
로컬 미러 저장소: assets/ 트리 (export 이후의 진실 원천)

규칙:
- full/ 이미지: export 시 1회 생성, 이후 불변, 이 파이프라인은 삭제하지 않음
- meta/<id>.json: export 실행마다 재작성
- 원자적 쓰기: temp(같은 디렉토리) → fsync → rename
- 실행 단위 배타 락: filelock (.export.lock)
- 별도 영속 인덱스 없음: 인덱스는 스캔 결과로 메모리에서만 만든다
"""

import json
import logging
import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from src.core.paths import AssetLocation, parse_asset_src
from src.domain.constants import (
    ASSETS_FULL_DIR,
    ASSETS_META_DIR,
    LOCK_FILENAME,
    MANIFEST_FILENAME,
    TEMP_SUFFIX,
)
from src.domain.errors import ErrorCodes, MirrorLockError
from src.domain.schemas import MetaSidecar

logger = logging.getLogger(__name__)

# =============================================================================
# Atomic Write
# =============================================================================


def _fsync_dir(dir_path: Path) -> None:
    """
    디렉토리 fsync (가능한 환경에서).

    rename 후 디렉토리 엔트리까지 내구성을 강화하려면 필요.
    """
    try:
        dir_fd = os.open(str(dir_path), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError) as e:
        logger.warning(
            f"Directory fsync failed for {dir_path}: {e}. "
            f"Rename durability may not be guaranteed."
        )


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    원자적 바이너리 쓰기.

    동작:
    - 중간 상태 없음: 최종 이름으로는 완성된 파일만 보인다
    - fsync 실패 시 경고 남기고 계속 진행
    - 실패 시 temp 파일 삭제 후 예외 전파

    Args:
        path: 저장할 파일 경로
        data: 파일 내용
    """
    dir_path = path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=dir_path,
            prefix=".",
            suffix=TEMP_SUFFIX,
            delete=False,
        ) as f:
            temp_path = Path(f.name)
            f.write(data)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError as e:
                logger.warning(
                    f"File fsync failed for {path}: {e}. "
                    f"Data may not be durable on power loss."
                )

        os.replace(temp_path, path)
        _fsync_dir(dir_path)

    except Exception:
        if temp_path and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


def render_json(data: Any) -> bytes:
    """결정론적 JSON 직렬화 (UTF-8, 비ASCII 유지, 끝 개행)."""
    text = json.dumps(data, indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def atomic_write_json(path: Path, data: Any) -> None:
    """원자적 JSON 쓰기."""
    atomic_write_bytes(path, render_json(data))


# =============================================================================
# Mirror Store
# =============================================================================


class MirrorStore:
    """
    assets/ 디렉토리 접근 계층.

    경로 인자는 모두 assets 루트 기준 상대 경로(src, '/' 구분).
    """

    LOCK_TIMEOUT = 5.0  # seconds

    def __init__(self, assets_root: Path):
        self.root = Path(assets_root)
        self.full_dir = self.root / ASSETS_FULL_DIR
        self.meta_dir = self.root / ASSETS_META_DIR
        self.manifest_path = self.root / MANIFEST_FILENAME
        self.lock_path = self.root / LOCK_FILENAME

    # -------------------------------------------------------------------------
    # Lock
    # -------------------------------------------------------------------------

    @contextmanager
    def lock(self, timeout: float | None = None) -> Generator[None, None, None]:
        """
        실행 단위 배타 락.

        Raises:
            MirrorLockError: MIRROR_LOCKED
        """
        self.root.mkdir(parents=True, exist_ok=True)
        wait = self.LOCK_TIMEOUT if timeout is None else timeout
        lock = FileLock(self.lock_path, timeout=wait)
        try:
            lock.acquire()
        except Timeout as e:
            raise MirrorLockError(
                ErrorCodes.MIRROR_LOCKED,
                lock_path=str(self.lock_path),
                timeout=wait,
            ) from e

        try:
            yield
        finally:
            lock.release()

    # -------------------------------------------------------------------------
    # Assets
    # -------------------------------------------------------------------------

    def path_for(self, src: str) -> Path:
        """상대 경로 → 절대 Path."""
        return self.root.joinpath(*src.split("/"))

    def asset_exists(self, src: str) -> bool:
        return self.path_for(src).is_file()

    def ensure_parent(self, src: str) -> Path:
        """자산의 상위 디렉토리 생성 (이미 있으면 그대로)."""
        path = self.path_for(src)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def write_asset(self, src: str, data: bytes) -> Path:
        """이미지 원자적 저장."""
        path = self.path_for(src)
        atomic_write_bytes(path, data)
        return path

    def scan_assets(self) -> list[AssetLocation]:
        """
        full/ 트리 재귀 스캔.

        숨김/임시 파일과 형식에 맞지 않는 경로는 무시한다.

        Returns:
            AssetLocation 목록 (src 오름차순)
        """
        found: list[AssetLocation] = []
        if not self.full_dir.is_dir():
            return found

        for root, dirs, files in os.walk(self.full_dir):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for filename in files:
                full = Path(root) / filename
                rel = full.relative_to(self.root).as_posix()
                location = parse_asset_src(rel)
                if location is None:
                    logger.debug(f"Ignoring non-asset file: {rel}")
                    continue
                found.append(location)

        found.sort(key=lambda loc: loc.src)
        return found

    def asset_index(self) -> dict[str, AssetLocation]:
        """
        id → AssetLocation (메모리 전용 인덱스).

        같은 id의 파일이 여러 개면 src가 가장 앞서는 것을 사용.
        """
        index: dict[str, AssetLocation] = {}
        for location in self.scan_assets():
            index.setdefault(location.id, location)
        return index

    # -------------------------------------------------------------------------
    # Sidecars
    # -------------------------------------------------------------------------

    def sidecar_path(self, record_id: str) -> Path:
        return self.meta_dir / f"{record_id}.json"

    def write_sidecar(self, sidecar: MetaSidecar) -> Path:
        """sidecar 재작성 (항상 덮어씀)."""
        path = self.sidecar_path(sidecar.id)
        atomic_write_json(path, sidecar.to_dict())
        return path

    def load_sidecar(self, record_id: str) -> dict[str, Any] | None:
        """
        sidecar 로드.

        Returns:
            dict 또는 None (없음/손상 → path 기반 필드로 degrade)
        """
        path = self.sidecar_path(record_id)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable sidecar {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring sidecar with unexpected shape: {path}")
            return None
        return data

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    def read_manifest_bytes(self) -> bytes | None:
        if not self.manifest_path.is_file():
            return None
        return self.manifest_path.read_bytes()

    def load_manifest(self) -> list[dict[str, Any]]:
        """기존 매니페스트 (없거나 손상 → 빈 목록)."""
        raw = self.read_manifest_bytes()
        if raw is None:
            return []
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable manifest {self.manifest_path}: {e}")
            return []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def write_manifest_bytes(self, payload: bytes) -> None:
        atomic_write_bytes(self.manifest_path, payload)
