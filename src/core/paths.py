"""
경로 해석: 레코드 → 로컬 자산 경로 (부수효과 없음)

규칙:
- 순수 + total: 절대 예외를 던지지 않고 안전한 기본값으로 degrade
- year: record.year → taken_at 연도 → 올해
- category: 소문자, [a-z0-9_-]만, 빈 결과 → "other"
- extension: object path 확장자, jpeg → jpg, 미지원/없음 → jpg
- 경로: full/<year>/<slug>/<id>.<ext> (플랫폼 무관, '/' 구분)
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import PurePosixPath

from src.domain.constants import (
    ASSETS_FULL_DIR,
    DEFAULT_CATEGORY_SLUG,
    DEFAULT_EXTENSION,
    EXTENSION_ALIASES,
    SUPPORTED_IMAGE_EXTENSIONS,
    TEMP_SUFFIX,
)
from src.domain.schemas import ResolvedAsset, SourceRecord

_SEPARATORS = re.compile(r"[\s/\\]+")
_DISALLOWED = re.compile(r"[^a-z0-9_-]+")
_REPEATED_DASH = re.compile(r"-{2,}")
_LEADING_YEAR = re.compile(r"^\s*(\d{4})")


# =============================================================================
# Fallback Rules
# =============================================================================


def year_from_taken_at(taken_at: str | None) -> int | None:
    """
    taken_at 문자열에서 연도 추출.

    ISO 날짜/일시 우선, 실패 시 앞 4자리 숫자.
    """
    if not taken_at:
        return None

    text = taken_at.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).year
    except ValueError:
        pass

    match = _LEADING_YEAR.match(text)
    if match:
        year = int(match.group(1))
        return year if year > 0 else None
    return None


def resolve_year(record: SourceRecord, today: date | None = None) -> int:
    """record.year → taken_at → 올해."""
    if record.year is not None and record.year > 0:
        return record.year

    taken_year = year_from_taken_at(record.taken_at)
    if taken_year is not None:
        return taken_year

    return (today or date.today()).year


def slugify_category(text: str | None) -> str:
    """
    카테고리 → 디렉토리용 slug.

    예: "Match Day" → "match-day", "a/b" → "a-b", "比赛实况" → "other"
    """
    if not text:
        return DEFAULT_CATEGORY_SLUG

    slug = _SEPARATORS.sub("-", str(text).lower())
    slug = _DISALLOWED.sub("", slug)
    slug = _REPEATED_DASH.sub("-", slug).strip("-")
    return slug or DEFAULT_CATEGORY_SLUG


def normalize_extension(ext: str | None) -> str | None:
    """확장자 정규화. 지원하지 않으면 None."""
    if not ext:
        return None
    value = ext.lstrip(".").lower()
    value = EXTENSION_ALIASES.get(value, value)
    return value if value in SUPPORTED_IMAGE_EXTENSIONS else None


def resolve_extension(object_path: str | None) -> str:
    """원격 object path → 로컬 확장자 (기본 jpg)."""
    if not object_path:
        return DEFAULT_EXTENSION
    suffix = PurePosixPath(object_path.strip()).suffix
    return normalize_extension(suffix) or DEFAULT_EXTENSION


# =============================================================================
# Path Resolution
# =============================================================================


def is_safe_record_id(record_id: str) -> bool:
    """파일명으로 쓸 수 있는 id인지 (경로 구분자/숨김 파일 금지)."""
    return (
        bool(record_id)
        and "/" not in record_id
        and "\\" not in record_id
        and not record_id.startswith(".")
    )


def asset_src(year: int | str, category_slug: str, record_id: str, extension: str) -> str:
    """assets 루트 기준 상대 경로."""
    return f"{ASSETS_FULL_DIR}/{year}/{category_slug}/{record_id}.{extension}"


def resolve_asset_path(record: SourceRecord, today: date | None = None) -> ResolvedAsset:
    """
    레코드의 로컬 자산 경로 해석.

    Args:
        record: 원격 레코드
        today: 연도 fallback 기준일 (테스트용)

    Returns:
        ResolvedAsset
    """
    year = resolve_year(record, today)
    slug = slugify_category(record.category)
    ext = resolve_extension(record.object_path)
    return ResolvedAsset(
        year=year,
        category_slug=slug,
        extension=ext,
        src=asset_src(year, slug, record.id, ext),
    )


@dataclass(frozen=True)
class AssetLocation:
    """스캔된 자산 경로에서 역으로 복원한 정보."""
    id: str
    year: int | str
    category_slug: str
    extension: str
    src: str


def parse_asset_src(src: str) -> AssetLocation | None:
    """
    full/<year>/<slug>/<id>.<ext> → AssetLocation.

    형식이 맞지 않거나 임시/숨김 파일이면 None.
    """
    parts = src.replace("\\", "/").split("/")
    if len(parts) != 4 or parts[0] != ASSETS_FULL_DIR:
        return None

    _, year_part, slug, filename = parts
    if not year_part or not slug or filename.startswith(".") or filename.endswith(TEMP_SUFFIX):
        return None

    name = PurePosixPath(filename)
    ext = normalize_extension(name.suffix)
    if ext is None or not name.stem:
        return None

    year: int | str = int(year_part) if year_part.isdigit() else year_part
    return AssetLocation(
        id=name.stem,
        year=year,
        category_slug=slug,
        extension=ext,
        src="/".join(parts),
    )
