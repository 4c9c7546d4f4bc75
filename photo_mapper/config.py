"""
Configuration constants and the runtime configuration for the photo mapper.
"""
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .exceptions import ConfigError

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.tif', '.tiff', '.heic', '.heif', '.webp',
              '.dng', '.cr2', '.cr3', '.nef', '.arw', '.orf', '.rw2'}

# Extension to MIME type mapping
# Used instead of mimetypes so RAW formats get a stable answer on every platform
EXT_TO_MIME = {
    '.jpg': 'image/jpeg', '.jpeg': 'image/jpeg', '.jpe': 'image/jpeg',
    '.png': 'image/png',
    '.tif': 'image/tiff', '.tiff': 'image/tiff',
    '.heic': 'image/heic', '.heif': 'image/heif',
    '.webp': 'image/webp',
    '.dng': 'image/x-adobe-dng',
    '.cr2': 'image/x-canon-cr2', '.cr3': 'image/x-canon-cr3',
    '.nef': 'image/x-nikon-nef',
    '.arw': 'image/x-sony-arw',
    '.orf': 'image/x-olympus-orf',
    '.rw2': 'image/x-panasonic-rw2',
}

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# --- Hashing ---
# Files smaller than this are hashed fully. Larger ones get a sparse fingerprint.
SPARSE_HASH_THRESHOLD = 5 * 1024 * 1024  # 5 MB
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Geo ---
EARTH_RADIUS_METERS = 6_371_000.0

# --- Query & Cache ---
MAX_QUERY_RESULTS = 1000
CACHE_KEY_PRECISION = 4
CACHE_TTL_ALL = 600       # full listings change less per request than viewport pans
CACHE_TTL_BOUNDED = 300
CACHE_MAX_ENTRY_BYTES = 100 * 1024

# --- Sync ---
SYNC_BATCH_SIZE = 50
SYNC_THROTTLE_SECONDS = 0.5
SYNC_LEASE_SECONDS = 30 * 60
SOURCE_PAGE_SIZE = 100
AUTOMATED_MAX_ITEMS = 200
AUTOMATED_MAX_DURATION_MS = 5 * 60 * 1000

# --- Derived Links ---
THUMBNAIL_URL_TEMPLATE = "{base_url}/photos/{id}/thumbnail?size={size}"
VIEW_URL_TEMPLATE = "{base_url}/photos/{id}/view"
DOWNLOAD_URL_TEMPLATE = "{base_url}/photos/{id}/download"
THUMBNAIL_SIZE = 400


_POSITIVE_INTS = (
    "max_results", "cache_max_entry_bytes", "batch_size", "lease_seconds",
    "page_size", "automated_max_items", "automated_max_duration_ms",
)
_NON_NEGATIVE_NUMBERS = ("throttle_seconds", "cache_ttl_all", "cache_ttl_bounded")
_FLAGS = ("show_progress", "watermark_requires_success", "delete_on_probe_error")


@dataclass
class MapperConfig:
    """
    Explicit runtime configuration, passed to every component at construction.
    """
    db_path: Path = Path("photo_map.db")
    collections: Dict[str, Path] = field(default_factory=dict)

    # Boundary
    api_token: Optional[str] = None
    base_url: str = "http://localhost:8000"

    # Query / cache
    max_results: int = MAX_QUERY_RESULTS
    cache_precision: int = CACHE_KEY_PRECISION
    cache_ttl_all: int = CACHE_TTL_ALL
    cache_ttl_bounded: int = CACHE_TTL_BOUNDED
    cache_max_entry_bytes: int = CACHE_MAX_ENTRY_BYTES

    # Sync
    batch_size: int = SYNC_BATCH_SIZE
    throttle_seconds: float = SYNC_THROTTLE_SECONDS
    lease_seconds: int = SYNC_LEASE_SECONDS
    page_size: int = SOURCE_PAGE_SIZE
    automated_max_items: int = AUTOMATED_MAX_ITEMS
    automated_max_duration_ms: int = AUTOMATED_MAX_DURATION_MS
    show_progress: bool = False

    # Watermark and cleanup policy
    watermark_requires_success: bool = True
    delete_on_probe_error: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Raises ConfigError for mistyped or out-of-range settings."""
        for name in _POSITIVE_INTS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if isinstance(self.cache_precision, bool) or not isinstance(self.cache_precision, int) or self.cache_precision < 0:
            raise ConfigError(f"cache_precision must be a non-negative integer, got {self.cache_precision!r}")
        for name in _NON_NEGATIVE_NUMBERS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value < float("inf"):
                raise ConfigError(f"{name} must be a non-negative number, got {value!r}")
        for name in _FLAGS:
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false, got {getattr(self, name)!r}")
        if self.api_token is not None and not isinstance(self.api_token, str):
            raise ConfigError("api_token must be a string")
        if not isinstance(self.base_url, str) or not self.base_url:
            raise ConfigError("base_url must be a non-empty string")

    @classmethod
    def from_toml(cls, path: Path) -> "MapperConfig":
        """
        Loads configuration from a TOML file.

        Top-level keys map onto fields of the same name; the [collections]
        table maps a collection id to its folder.
        """
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}")
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}")

        base_dir = path.parent
        kwargs = {}
        known = set(cls.__dataclass_fields__)
        for key, value in data.items():
            if key == "collections":
                if not isinstance(value, dict):
                    raise ConfigError("[collections] must be a table of id = \"folder\"")
                kwargs["collections"] = {
                    str(cid): _resolve(base_dir, folder) for cid, folder in value.items()
                }
            elif key == "db_path":
                kwargs["db_path"] = _resolve(base_dir, value)
            elif key in known:
                kwargs[key] = value
            else:
                raise ConfigError(f"Unknown config key: {key}")
        return cls(**kwargs)


def _resolve(base_dir: Path, value: str) -> Path:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Expected a path string, got {value!r}")
    p = Path(value).expanduser()
    return p if p.is_absolute() else base_dir / p
