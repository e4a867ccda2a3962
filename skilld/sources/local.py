"""Local project sources: package.json dependencies and node_modules."""

import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles

from .models import LocalDependency
from .urls import normalize_repo_url

PathLike = Union[str, Path]

_README_RE = re.compile(r"^readme\.md$", re.IGNORECASE)
_SEMVER_PREFIX_RE = re.compile(r"^[\^~>=<\d]")


async def read_package_json(path: Path) -> Optional[Dict]:
    """Parse a package.json file; None when missing or malformed."""
    if not path.is_file():
        return None
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def find_readme(directory: Path) -> Optional[Path]:
    """Case-insensitive ``README.md`` in a directory."""
    if not directory.is_dir():
        return None
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and _README_RE.match(entry.name):
            return entry
    return None


async def resolve_installed_version(name: str, cwd: PathLike) -> Optional[str]:
    """Version of ``name`` installed under ``cwd/node_modules``."""
    pkg = await read_package_json(Path(cwd) / "node_modules" / name / "package.json")
    if pkg and pkg.get("version"):
        return pkg["version"]
    return None


async def parse_version_specifier(name: str, version: str, cwd: PathLike) -> Optional[LocalDependency]:
    """Turn a package.json dependency specifier into a concrete dependency.

    Handles ``link:``, ``npm:`` aliases, ``file:``/``git:`` (skipped),
    semver ranges, ``catalog:`` and ``workspace:``.
    """
    cwd = Path(cwd)

    if version.startswith("link:"):
        linked = await read_package_json((cwd / version[5:]).resolve() / "package.json")
        if linked is None:
            return None
        return LocalDependency(name=linked.get("name") or name, version=linked.get("version") or "0.0.0")

    if version.startswith("npm:"):
        spec = version[4:]
        at = spec.find("@", 1) if spec.startswith("@") else spec.find("@")
        real_name = spec[:at] if at > 0 else spec
        installed = await resolve_installed_version(real_name, cwd)
        return LocalDependency(name=real_name, version=installed or "*")

    if version.startswith(("file:", "git:", "git+")):
        return None

    installed = await resolve_installed_version(name, cwd)
    if installed:
        return LocalDependency(name=name, version=installed)

    if _SEMVER_PREFIX_RE.match(version):
        return LocalDependency(name=name, version=re.sub(r"^[\^~>=<]", "", version))

    if version.startswith(("catalog:", "workspace:")):
        return LocalDependency(name=name, version="*")

    return None


async def read_local_dependencies(cwd: PathLike) -> List[LocalDependency]:
    """Dependencies and devDependencies of the project at ``cwd``.

    Raises:
        FileNotFoundError: when ``cwd`` has no package.json
    """
    pkg_path = Path(cwd) / "package.json"
    pkg = await read_package_json(pkg_path)
    if pkg is None:
        raise FileNotFoundError(f"No package.json found in {cwd}")

    deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
    results = []
    for name, spec in deps.items():
        parsed = await parse_version_specifier(name, str(spec), cwd)
        if parsed:
            results.append(parsed)
    return results


async def get_link_dependency_path(name: str, cwd: PathLike) -> Optional[Path]:
    """Local directory of a ``link:`` dependency declared at ``cwd``."""
    pkg = await read_package_json(Path(cwd) / "package.json")
    if pkg is None:
        return None
    deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
    spec = deps.get(name)
    if not isinstance(spec, str) or not spec.startswith("link:"):
        return None
    return (Path(cwd) / spec[5:]).resolve()


def repo_url_from_manifest(pkg: Dict) -> Optional[str]:
    repository = pkg.get("repository")
    if isinstance(repository, dict) and repository.get("url"):
        return normalize_repo_url(repository["url"])
    if isinstance(repository, str):
        return normalize_repo_url(repository)
    return None
