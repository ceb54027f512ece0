"""
Domain Constants: 파이프라인 전역 상수.

경로 정책, 확장자, 정리 모드 등 시스템 전반에서 사용되는 값들.
디렉토리 구조는 갤러리 렌더러와의 호환 계약이므로 함부로 바꾸지 않는다.
"""

# =============================================================================
# Mirror Directory Structure (로컬 미러 구조)
# =============================================================================
# assets/
# ├── full/<year>/<category_slug>/<id>.<ext>   # 원본 이미지 (불변)
# ├── meta/<id>.json                          # 메타 sidecar
# ├── manifest.json                           # 갤러리용 매니페스트
# └── .export.lock

DEFAULT_ASSETS_DIR = "assets"
DEFAULT_LOGS_DIR = "logs"
ASSETS_FULL_DIR = "full"
ASSETS_META_DIR = "meta"
MANIFEST_FILENAME = "manifest.json"
LOCK_FILENAME = ".export.lock"
TEMP_SUFFIX = ".tmp"

# =============================================================================
# Images (이미지 확장자 정책)
# =============================================================================

SUPPORTED_IMAGE_EXTENSIONS = ("jpg", "png", "gif", "webp", "heic", "avif")
EXTENSION_ALIASES = {"jpeg": "jpg", "jpe": "jpg"}
DEFAULT_EXTENSION = "jpg"
DEFAULT_CATEGORY_SLUG = "other"

# =============================================================================
# Remote (Supabase)
# =============================================================================

DEFAULT_BUCKET = "photos"
DEFAULT_TABLE = "photos"
RECORD_COLUMNS = (
    "id",
    "image_path",
    "uploader_name",
    "taken_at",
    "people",
    "category",
    "year",
    "status",
    "created_at",
)
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_RETRIES = 2

# =============================================================================
# Cleanup (정리 정책)
# =============================================================================

# 업로드 폼이 쓰는 prefix 밖의 객체는 삭제하지 않는다
DEFAULT_OBJECT_PREFIX = "uploads/"
DEFAULT_STORAGE_BATCH_SIZE = 100
DEFAULT_TABLE_BATCH_SIZE = 200

CLEANUP_MODE_ALIASES = {
    "db_only": "table",
    "db_and_storage": "both",
}

TRUTHY_VALUES = ("1", "true", "yes", "y", "on")

# =============================================================================
# Run Report
# =============================================================================

RUN_ID_PREFIX = "RUN-"
