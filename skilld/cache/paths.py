"""Version keys and validated cache paths.

Every path into the shared cache is composed here. Names and versions come
from untrusted registry metadata, so both are validated and the composed
path is checked to stay under the cache root before anything touches disk.
"""

import re
from pathlib import Path
from typing import Optional, Tuple, Union

from skilld.core.errors import InvalidIdentifier, PathTraversal

REFERENCES_DIRNAME = "references"
SEARCH_DIRNAME = "search"

PACKAGE_NAME_RE = re.compile(r"^(?:@[a-z0-9][-a-z0-9._]*/)?[a-z0-9][-a-z0-9._]*$")
VERSION_RE = re.compile(r"^[a-z0-9][-\w.+]*$")

PathLike = Union[str, Path]


def get_version_key(version: str) -> str:
    """Exact version key for cache keying."""
    return version


def derive_cache_key(name: str, version: str) -> str:
    """Cache key for a package: ``name@version``."""
    return f"{name}@{get_version_key(version)}"


def validate_package_name(name: str) -> str:
    if not name or not PACKAGE_NAME_RE.match(name):
        raise InvalidIdentifier("package name", name)
    return name


def validate_version(version: str) -> str:
    if not version:
        raise InvalidIdentifier("version", version)
    if ".." in version or "/" in version or "\\" in version:
        raise PathTraversal(version, "version")
    if not VERSION_RE.match(version):
        raise InvalidIdentifier("version", version)
    return version


def ensure_under_root(root: PathLike, path: PathLike) -> Path:
    """Resolve ``path`` and require it to live strictly below ``root``.

    Raises:
        PathTraversal: if the resolved path is the root itself or escapes it
    """
    resolved_root = Path(root).resolve()
    resolved = Path(path).resolve()
    try:
        relative = resolved.relative_to(resolved_root)
    except ValueError:
        raise PathTraversal(str(resolved), str(resolved_root))
    if not relative.parts:
        raise PathTraversal(str(resolved), str(resolved_root))
    return resolved


def references_dir(root: PathLike) -> Path:
    return Path(root) / REFERENCES_DIRNAME


def resolve_cache_dir(root: PathLike, name: str, version: str) -> Path:
    """Validated cache directory for ``name@version``.

    Scoped names nest one level under their scope:
    ``<root>/references/@scope/short@version``.

    Raises:
        InvalidIdentifier: name or version fails validation
        PathTraversal: version or composed path escapes the references dir
    """
    validate_package_name(name)
    validate_version(version)
    refs = references_dir(root)
    return ensure_under_root(refs, refs / derive_cache_key(name, version))


def get_package_db_path(root: PathLike, name: str, version: str) -> Path:
    """Search index location for ``name@version``."""
    validate_package_name(name)
    validate_version(version)
    search = Path(root) / SEARCH_DIRNAME
    return ensure_under_root(search, search / f"{derive_cache_key(name, version)}.db")


def split_package_name(name: str) -> Tuple[Optional[str], str]:
    """Split a package name into ``(scope or None, short name)``."""
    if name.startswith("@") and "/" in name:
        scope, short = name.split("/", 1)
        return scope, short
    return None, name


def sanitize_skill_name(name: str) -> str:
    """Directory-safe skill name: ``@vue/reactivity`` becomes ``vue-reactivity``."""
    cleaned = re.sub(r"[^a-z0-9._]+", "-", name.lower())
    cleaned = re.sub(r"^[.\-]+|[.\-]+$", "", cleaned)
    return cleaned[:255] or "unnamed-skill"
