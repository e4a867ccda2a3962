"""npm registry lookups."""

import io
import shutil
import tarfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from skilld.core import debug as log

from .http import HttpClient
from .models import DistTagInfo, NpmPackageInfo

UNPKG_BASE = "https://unpkg.com"
REGISTRY_BASE = "https://registry.npmjs.org"


class NpmSource:
    """npm registry and unpkg CDN access for one HTTP session."""

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch_package(self, name: str) -> Optional[NpmPackageInfo]:
        """Latest ``package.json``: unpkg first (CDN), registry as fallback."""
        data = await self.http.fetch_json(f"{UNPKG_BASE}/{name}/package.json")
        if not isinstance(data, dict):
            data = await self.http.fetch_json(f"{REGISTRY_BASE}/{name}/latest")
        if not isinstance(data, dict) or not data.get("name"):
            return None
        return NpmPackageInfo.from_dict(data)

    async def fetch_registry_meta(self, name: str, version: str) -> Tuple[Optional[str], Dict[str, DistTagInfo]]:
        """Release date of ``version`` and dist-tags enriched with their dates.

        Returns:
            (released_at, dist_tags)
        """
        data = await self.http.fetch_json(f"{REGISTRY_BASE}/{name}")
        if not isinstance(data, dict):
            return None, {}

        times = data.get("time") or {}
        dist_tags = {
            tag: DistTagInfo(version=ver, released_at=times.get(ver))
            for tag, ver in (data.get("dist-tags") or {}).items()
        }
        return times.get(version) or None, dist_tags

    async def search_packages(self, query: str, size: int = 5) -> List[Dict[str, str]]:
        """Registry search, used to suggest names when a lookup misses."""
        data = await self.http.fetch_json(
            f"{REGISTRY_BASE}/-/v1/search?text={quote(query)}&size={size}"
        )
        if not isinstance(data, dict):
            return []
        results = []
        for obj in data.get("objects") or []:
            pkg = obj.get("package") or {}
            if pkg.get("name"):
                results.append({
                    "name": pkg["name"],
                    "version": pkg.get("version", ""),
                    "description": pkg.get("description") or "",
                })
        return results

    async def fetch_pkg_dist(self, name: str, version: str, pkg_dir: Path) -> Optional[Path]:
        """Download and unpack the published tarball into ``pkg_dir``.

        npm tarballs nest everything under ``package/``; that component is
        stripped. Members escaping ``pkg_dir`` are skipped.

        Returns:
            ``pkg_dir`` or None when the tarball is unavailable
        """
        if (pkg_dir / "package.json").exists():
            return pkg_dir

        meta = await self.http.fetch_json(f"{REGISTRY_BASE}/{name}/{version}")
        dist = meta.get("dist") if isinstance(meta, dict) else None
        tarball_url = dist.get("tarball") if isinstance(dist, dict) else None
        if not tarball_url:
            return None

        payload = await self.http.fetch_bytes(tarball_url)
        if not payload:
            return None

        pkg_dir.mkdir(parents=True, exist_ok=True)
        root = pkg_dir.resolve()
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
                for member in tar.getmembers():
                    if not (member.isfile() or member.isdir()):
                        continue
                    parts = Path(member.name).parts[1:]
                    if not parts:
                        continue
                    target = (pkg_dir / Path(*parts)).resolve()
                    if root not in target.parents:
                        continue
                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    with source, open(target, "wb") as out:
                        shutil.copyfileobj(source, out)
        except tarfile.TarError as e:
            log.log_error(f"unpack {name}@{version}", e)
            shutil.rmtree(pkg_dir, ignore_errors=True)
            return None

        return pkg_dir
