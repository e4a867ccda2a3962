"""Core modules: errors, logging, sanitizer and the lockfile codec."""

from . import debug
from .errors import (
    InvalidIdentifier,
    InvalidTransition,
    NotFound,
    PackageSyncError,
    PathTraversal,
    SkilldError,
    TransientFetchError,
)
from .lockfile import (
    SkilldLock,
    SkillInfo,
    merge_locks,
    parse_packages,
    read_lock,
    recover_lock,
    remove_lock_entry,
    serialize_packages,
    write_lock,
)
from .sanitize import sanitize_markdown

__all__ = [
    "debug",
    # Errors
    "SkilldError",
    "InvalidIdentifier",
    "InvalidTransition",
    "PathTraversal",
    "NotFound",
    "TransientFetchError",
    "PackageSyncError",
    # Lockfile
    "SkilldLock",
    "SkillInfo",
    "read_lock",
    "write_lock",
    "remove_lock_entry",
    "merge_locks",
    "recover_lock",
    "parse_packages",
    "serialize_packages",
    # Sanitizer
    "sanitize_markdown",
]
