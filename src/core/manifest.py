"""
매니페스트 재생성: assets/ 트리 + sidecar → manifest.json

규칙:
- 네트워크 접근 없음. 부분적으로만 export된 트리에서도 단독 실행 가능
- src는 항상 스캔 결과에서 (오래된 sidecar의 src는 신뢰하지 않음)
- sidecar 없음/손상 → 경로에서 복원한 필드로 degrade
- 순서 안정성: 기존 매니페스트 순서 유지, 신규 항목은 정렬 후 뒤에 추가
  (연도 내림차순 → 카테고리 오름차순 → id 오름차순)
- 트리가 같으면 바이트 단위로 동일한 결과
"""

import logging
import unicodedata
from typing import Any

from src.core.mirror import MirrorStore, render_json
from src.core.paths import AssetLocation
from src.domain.errors import ErrorCodes, ManifestConsistencyError
from src.domain.schemas import ManifestBuildResult, ManifestEntry

logger = logging.getLogger(__name__)


# =============================================================================
# Ordering
# =============================================================================


def _year_key(year: int | str) -> tuple[int, int, str]:
    """연도 내림차순. 숫자가 아닌 연도 디렉토리는 맨 뒤."""
    if isinstance(year, int):
        return (0, -year, "")
    return (1, 0, str(year))


def collation_key(text: str) -> tuple[str, str]:
    """
    카테고리 비교 키.

    전각/반각, 대소문자 차이를 접고 원문으로 tie-break.
    프로세스 locale에 의존하지 않으므로 어느 환경에서든 같은 순서.
    언어별 사전순은 아님: 한자 카테고리는 병음이 아니라 코드 포인트 순.
    """
    return (unicodedata.normalize("NFKC", text).casefold(), text)


def id_key(record_id: str) -> tuple[int, int, str]:
    """숫자 id는 숫자 크기로, 나머지는 문자열로."""
    if record_id.isdigit():
        return (0, int(record_id), record_id)
    return (1, 0, record_id)


def new_entry_sort_key(entry: ManifestEntry) -> tuple[Any, ...]:
    return (_year_key(entry.year), collation_key(entry.category), id_key(entry.id))


def order_entries(
    entries: dict[str, ManifestEntry],
    prior_ids: list[str],
) -> tuple[list[ManifestEntry], list[str]]:
    """
    기존 순서 유지 + 신규 정렬 추가.

    Returns:
        (정렬된 항목, 신규 id 목록)
    """
    seen: set[str] = set()
    kept: list[ManifestEntry] = []
    for record_id in prior_ids:
        if record_id in entries and record_id not in seen:
            seen.add(record_id)
            kept.append(entries[record_id])

    fresh = sorted(
        (entry for record_id, entry in entries.items() if record_id not in seen),
        key=new_entry_sort_key,
    )
    return kept + fresh, [entry.id for entry in fresh]


# =============================================================================
# Entry Merge
# =============================================================================


def _sidecar_str(sidecar: dict[str, Any], key: str) -> str:
    value = sidecar.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _sidecar_year(sidecar: dict[str, Any]) -> int | None:
    value = sidecar.get("year")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def merge_entry(location: AssetLocation, sidecar: dict[str, Any] | None) -> ManifestEntry:
    """
    스캔 결과 + sidecar → ManifestEntry.

    sidecar 값 우선, 비어 있으면 경로에서 복원한 값.
    """
    sidecar = sidecar or {}
    year = _sidecar_year(sidecar)
    return ManifestEntry(
        id=location.id,
        year=year if year is not None else location.year,
        category=_sidecar_str(sidecar, "category") or location.category_slug,
        uploader_name=_sidecar_str(sidecar, "uploader_name"),
        taken_at=_sidecar_str(sidecar, "taken_at"),
        people=_sidecar_str(sidecar, "people"),
        src=location.src,
    )


# =============================================================================
# Builder
# =============================================================================


class ManifestBuilder:
    """
    Manifest Builder.

    manifest = f(LocalAssets, MetaSidecars, 이전 manifest 순서)
    """

    def __init__(self, store: MirrorStore):
        self.store = store

    def collect_entries(self) -> dict[str, ManifestEntry]:
        """스캔 + sidecar 병합. id당 하나."""
        by_id: dict[str, list[AssetLocation]] = {}
        for location in self.store.scan_assets():
            by_id.setdefault(location.id, []).append(location)

        entries: dict[str, ManifestEntry] = {}
        for record_id, locations in by_id.items():
            sidecar = self.store.load_sidecar(record_id)
            chosen = locations[0]
            if len(locations) > 1:
                preferred = (sidecar or {}).get("src")
                for location in locations:
                    if location.src == preferred:
                        chosen = location
                        break
                logger.warning(
                    f"Multiple assets for id={record_id}: "
                    f"{[loc.src for loc in locations]}, using {chosen.src}"
                )
            entries[record_id] = merge_entry(chosen, sidecar)
        return entries

    def _drop_vanished(self, entries: list[ManifestEntry]) -> tuple[list[ManifestEntry], list[str]]:
        """스캔 이후 사라진 자산은 매니페스트에서 제외."""
        present: list[ManifestEntry] = []
        dropped: list[str] = []
        for entry in entries:
            if self.store.asset_exists(entry.src):
                present.append(entry)
                continue
            error = ManifestConsistencyError(
                ErrorCodes.ASSET_VANISHED, id=entry.id, src=entry.src
            )
            logger.warning(f"Dropping manifest entry: {error}")
            dropped.append(entry.id)
        return present, dropped

    def rebuild(self) -> ManifestBuildResult:
        """
        매니페스트 재생성 및 저장.

        내용이 기존 파일과 같으면 다시 쓰지 않는다.

        Returns:
            ManifestBuildResult
        """
        prior = self.store.load_manifest()
        prior_ids = [str(item["id"]) for item in prior if item.get("id") is not None]

        entries = self.collect_entries()
        ordered, added = order_entries(entries, prior_ids)
        ordered, dropped = self._drop_vanished(ordered)

        final_ids = {entry.id for entry in ordered}
        payload = render_json([entry.to_dict() for entry in ordered])
        changed = self.store.read_manifest_bytes() != payload
        if changed:
            self.store.write_manifest_bytes(payload)

        result = ManifestBuildResult(
            entries=ordered,
            added=[record_id for record_id in added if record_id in final_ids],
            removed=sorted({rid for rid in prior_ids if rid not in final_ids}, key=id_key),
            dropped=dropped,
            path=str(self.store.manifest_path),
            changed=changed,
        )
        logger.info(
            f"Manifest: {len(ordered)} entries "
            f"(+{len(result.added)} / -{len(result.removed)}, dropped {len(dropped)})"
            f"{'' if changed else ', unchanged'}"
        )
        return result
