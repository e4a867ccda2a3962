"""Version-keyed reference cache."""

from .paths import (
    derive_cache_key,
    ensure_under_root,
    get_package_db_path,
    get_version_key,
    resolve_cache_dir,
    sanitize_skill_name,
)
from .store import CachedDoc, CachedPackage, CacheStore, LinkResult, LinkStatus

__all__ = [
    # Paths
    "get_version_key",
    "derive_cache_key",
    "resolve_cache_dir",
    "ensure_under_root",
    "get_package_db_path",
    "sanitize_skill_name",
    # Store
    "CacheStore",
    "CachedDoc",
    "CachedPackage",
    "LinkResult",
    "LinkStatus",
]
