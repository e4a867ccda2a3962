"""Version-keyed reference cache.

Layout::

    <root>/references/<name>@<version>/{docs,llms.txt,llms-docs,issues,
                                        discussions,releases,sections,pkg}
    <root>/references/@scope/<short>@<version>/...

At most one version per package name is kept: every write evicts the
sibling versions of the same name. Writes and eviction for one name are
serialized across processes with an advisory ``fcntl`` lock.
"""

import fcntl
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from skilld.core import debug as log
from skilld.core.errors import PathTraversal
from skilld.core.sanitize import sanitize_markdown

from .paths import (
    PathLike,
    ensure_under_root,
    references_dir,
    resolve_cache_dir,
    split_package_name,
    validate_package_name,
)

DIR_MODE = 0o700
FILE_MODE = 0o600
LOCKS_DIRNAME = ".locks"
SKILLD_LINK_DIRNAME = ".skilld"
SECTIONS_DIRNAME = "sections"

# Generated or copied content, not upstream docs
_NOT_DOCS = {SECTIONS_DIRNAME, "pkg"}


@dataclass
class CachedDoc:
    """A document to write into, or read from, a cache entry."""
    path: str
    content: str


@dataclass
class CachedPackage:
    name: str
    version: str
    dir: Path


class LinkStatus(str, Enum):
    LINKED = "linked"
    COPIED = "copied"
    SKIPPED = "skipped"


@dataclass
class LinkResult:
    """Outcome of projecting a cached directory into a skill directory."""
    status: LinkStatus
    link_path: Path
    target: Optional[Path] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status != LinkStatus.SKIPPED


class CacheStore:
    """Filesystem cache of package documentation, keyed by ``name@version``."""

    def __init__(self, root: PathLike):
        self.root = Path(root).expanduser()
        self.references_dir = references_dir(self.root)

    def cache_dir(self, name: str, version: str) -> Path:
        return resolve_cache_dir(self.root, name, version)

    def is_cached(self, name: str, version: str) -> bool:
        """Check if package is cached at the given version."""
        return self.cache_dir(name, version).exists()

    def ensure_cache_dir(self) -> None:
        self.references_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)

    @contextmanager
    def package_lock(self, name: str) -> Iterator[None]:
        """Advisory cross-process lock on one package name."""
        validate_package_name(name)
        lock_dir = self.references_dir / LOCKS_DIRNAME
        lock_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        lock_path = lock_dir / f"{name.replace('/', '__')}.lock"
        # Append mode so opening never truncates a lock another process holds
        with open(lock_path, "a") as lock_fd:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)

    def write(self, name: str, version: str, docs: List[CachedDoc]) -> Path:
        """Write docs into the cache entry, then evict other versions.

        Content is sanitized before it reaches disk. Doc paths are relative
        to the entry and may not escape it.

        Returns:
            The cache entry directory
        """
        cache_dir = self.cache_dir(name, version)

        with self.package_lock(name):
            cache_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)

            for doc in docs:
                file_path = ensure_under_root(cache_dir, cache_dir / doc.path)
                file_path.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
                file_path.write_text(sanitize_markdown(doc.content), encoding="utf-8")
                os.chmod(file_path, FILE_MODE)

            evicted = self.clean_stale_versions(name, version)

        log.log_cache_write(name, version, len(docs), len(evicted))
        return cache_dir

    def clean_stale_versions(self, name: str, version: str) -> List[Path]:
        """Remove every cached version of ``name`` other than ``version``.

        Returns:
            Directories removed
        """
        cache_dir = self.cache_dir(name, version)
        _, short_name = split_package_name(name)
        parent = cache_dir.parent
        if not parent.is_dir():
            return []

        prefix = f"{short_name}@"
        removed = []
        for entry in parent.iterdir():
            if entry.name == cache_dir.name or not entry.name.startswith(prefix):
                continue
            if not entry.is_dir():
                continue
            shutil.rmtree(entry)
            removed.append(entry)
            log.info(f"CACHE EVICT: {name} stale version {entry.name}")
        return removed

    def read(self, name: str, version: str) -> List[CachedDoc]:
        """Read all markdown docs of a cache entry with POSIX relative paths."""
        cache_dir = self.cache_dir(name, version)
        if not cache_dir.exists():
            return []

        docs = []
        for path in sorted(cache_dir.rglob("*")):
            relative = path.relative_to(cache_dir)
            if relative.parts[0] in _NOT_DOCS:
                continue
            if path.is_file() and path.suffix in (".md", ".mdx"):
                docs.append(CachedDoc(
                    path=relative.as_posix(),
                    content=path.read_text(encoding="utf-8"),
                ))
        return docs

    def clear(self, name: str, version: str) -> bool:
        """Remove one cache entry. Returns False if it did not exist."""
        cache_dir = self.cache_dir(name, version)
        if not cache_dir.exists():
            return False
        shutil.rmtree(cache_dir)
        return True

    def clear_all(self) -> int:
        """Remove every cache entry. Returns the number removed."""
        packages = self.list_cached()
        for pkg in packages:
            shutil.rmtree(pkg.dir)
        return len(packages)

    def list_cached(self) -> List[CachedPackage]:
        if not self.references_dir.is_dir():
            return []

        packages = []
        for entry in sorted(self.references_dir.iterdir()):
            if not entry.is_dir() or entry.name == LOCKS_DIRNAME:
                continue
            if entry.name.startswith("@") and "@" not in entry.name[1:]:
                for scoped in sorted(entry.iterdir()):
                    if scoped.is_dir() and "@" in scoped.name:
                        short, _, version = scoped.name.rpartition("@")
                        packages.append(CachedPackage(f"{entry.name}/{short}", version, scoped))
            elif "@" in entry.name[1:]:
                name, _, version = entry.name.rpartition("@")
                packages.append(CachedPackage(name, version, entry))
        return packages

    def write_sections(self, name: str, version: str, sections: Dict[str, str]) -> Path:
        """Store generated section outputs for reuse across projects."""
        sections_dir = self.cache_dir(name, version) / SECTIONS_DIRNAME
        sections_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        for file_name, content in sections.items():
            path = ensure_under_root(sections_dir, sections_dir / file_name)
            path.write_text(content, encoding="utf-8")
            os.chmod(path, FILE_MODE)
        return sections_dir

    def read_section(self, name: str, version: str, file_name: str) -> Optional[str]:
        sections_dir = self.cache_dir(name, version) / SECTIONS_DIRNAME
        path = ensure_under_root(sections_dir, sections_dir / file_name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def resolve_pkg_dir(self, name: str, cwd: PathLike, version: Optional[str] = None) -> Optional[Path]:
        """Package directory: ``node_modules/<name>`` first, then cached ``pkg/``."""
        node_modules_path = Path(cwd) / "node_modules" / name
        if node_modules_path.exists():
            return node_modules_path

        if version:
            cached_pkg = self.cache_dir(name, version) / "pkg"
            if (cached_pkg / "package.json").exists():
                return cached_pkg

        return None

    def link_into(self, skill_dir: PathLike, name: str, version: str, subdir: str) -> LinkResult:
        """Project ``<entry>/<subdir>`` to ``<skill_dir>/.skilld/<subdir>``.

        Any previous link is removed first, so a missing cached subdir leaves
        nothing behind. When the OS refuses symlinks the directory is copied
        instead. Other filesystem errors propagate.
        """
        cached_path = ensure_under_root(self.references_dir, self.cache_dir(name, version) / subdir)
        links_dir = Path(skill_dir) / SKILLD_LINK_DIRNAME
        if Path(subdir).is_absolute() or ".." in Path(subdir).parts:
            raise PathTraversal(subdir, str(links_dir))
        link_path = links_dir / subdir

        if not cached_path.exists():
            _remove_existing(link_path)
            return LinkResult(LinkStatus.SKIPPED, link_path, reason=f"no cached {subdir}")

        return _project(cached_path, link_path)

    def link_pkg(self, skill_dir: PathLike, name: str, cwd: PathLike, version: Optional[str] = None) -> LinkResult:
        """Project the package directory to ``<skill_dir>/.skilld/pkg``."""
        links_dir = Path(skill_dir) / SKILLD_LINK_DIRNAME
        link_path = links_dir / "pkg"
        pkg_dir = self.resolve_pkg_dir(name, cwd, version)
        if pkg_dir is None:
            _remove_existing(link_path)
            return LinkResult(LinkStatus.SKIPPED, link_path, reason="package directory not found")
        return _project(pkg_dir.resolve(), link_path)


def _remove_existing(link_path: Path) -> None:
    if link_path.is_symlink() or link_path.is_file():
        link_path.unlink()
    elif link_path.is_dir():
        shutil.rmtree(link_path)


def _project(target: Path, link_path: Path) -> LinkResult:
    link_path.parent.mkdir(parents=True, exist_ok=True)
    _remove_existing(link_path)

    try:
        os.symlink(target, link_path, target_is_directory=target.is_dir())
        return LinkResult(LinkStatus.LINKED, link_path, target)
    except (NotImplementedError, PermissionError) as e:
        log.warning(f"Symlink refused for {link_path}, copying instead: {e}")

    if target.is_dir():
        shutil.copytree(target, link_path)
    else:
        shutil.copy2(target, link_path)
    return LinkResult(LinkStatus.COPIED, link_path, target)
