"""Release notes from GitHub releases, with a CHANGELOG.md fallback."""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from skilld.cache.store import CachedDoc
from skilld.core import debug as log
from skilld.core.errors import TransientFetchError

from .frontmatter import build_frontmatter, iso_date
from .github import API_BASE, RAW_BASE, UNGH_BASE
from .http import HttpClient
from .models import GitHubRelease

MAX_RELEASES = 20
MAX_CHANGELOG_SIZE = 500_000
CHANGELOG_NAMES = ("CHANGELOG.md", "changelog.md", "CHANGES.md")

_SEMVER_RE = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?")
_PRERELEASE_RE = re.compile(r"^\d+\.\d+\.\d+-.+")


@dataclass
class SemVer:
    major: int
    minor: int
    patch: int
    raw: str

    def key(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)


def parse_semver(version: str) -> Optional[SemVer]:
    clean = version[1:] if version.startswith("v") else version
    match = _SEMVER_RE.match(clean)
    if not match:
        return None
    return SemVer(
        major=int(match.group(1)),
        minor=int(match.group(2) or 0),
        patch=int(match.group(3) or 0),
        raw=clean,
    )


def is_prerelease(version: str) -> bool:
    return bool(_PRERELEASE_RE.match(version[1:] if version.startswith("v") else version))


def extract_version(tag: str, package_name: Optional[str] = None) -> str:
    """Version part of a tag: ``pkg@1.2.3``, ``pkg-v1.2.3``, ``v1.2.3``, ``1.2.3``."""
    if package_name:
        escaped = re.escape(package_name)
        match = re.match(rf"^{escaped}@(.+)$", tag) or re.match(rf"^{escaped}-v?(.+)$", tag)
        if match:
            return match.group(1)
    return tag[1:] if tag.startswith("v") else tag


def tag_matches_package(tag: str, package_name: str) -> bool:
    return tag.startswith(f"{package_name}@") or tag.startswith(f"{package_name}-")


def release_filename(tag: str) -> str:
    return tag if "@" in tag or tag.startswith("v") else f"v{tag}"


def select_releases(
    releases: List[GitHubRelease],
    package_name: Optional[str] = None,
    installed_version: Optional[str] = None,
) -> List[GitHubRelease]:
    """Newest-first stable releases up to the installed version.

    In monorepos only the package's own tags count. Prereleases are kept
    only when the installed version is a prerelease of the same major.minor.
    """
    monorepo = bool(package_name) and any(tag_matches_package(r.tag, package_name) for r in releases)
    tag_pkg = package_name if monorepo else None
    installed = parse_semver(installed_version) if installed_version else None
    installed_pre = is_prerelease(installed_version) if installed_version else False

    selected = []
    for release in releases:
        if monorepo and not tag_matches_package(release.tag, package_name):
            continue
        sv = parse_semver(extract_version(release.tag, tag_pkg))
        if sv is None:
            continue
        if release.prerelease:
            if not installed_pre or installed is None:
                continue
            if (sv.major, sv.minor) != (installed.major, installed.minor):
                continue
        elif installed and sv.key() > installed.key():
            continue
        selected.append((sv, release))

    selected.sort(key=lambda item: item[0].key(), reverse=True)
    return [release for _, release in selected[:MAX_RELEASES]]


def format_release(release: GitHubRelease, package_name: Optional[str] = None) -> str:
    fm = build_frontmatter({
        "tag": release.tag,
        "version": extract_version(release.tag, package_name),
        "published": iso_date(release.published_at or release.created_at),
        "name": release.name if release.name and release.name != release.tag else None,
    })
    return f"{fm}\n\n# {release.name or release.tag}\n\n{release.markdown}"


def generate_release_index(
    releases: List[GitHubRelease],
    package_name: Optional[str] = None,
    has_changelog: bool = False,
) -> str:
    """``releases/_INDEX.md`` with major/minor markers."""
    fm = build_frontmatter({
        "total": len(releases),
        "latest": releases[0].tag if releases else "unknown",
    })
    lines = [fm, "", "# Releases Index", ""]

    for r in releases:
        sv = parse_semver(extract_version(r.tag, package_name))
        label = ""
        if sv and sv.patch == 0 and sv.minor == 0:
            label = " **[MAJOR]**"
        elif sv and sv.patch == 0:
            label = " **[MINOR]**"
        date = iso_date(r.published_at or r.created_at)
        lines.append(f"- [{r.tag}](./{release_filename(r.tag)}.md): {r.name or r.tag} ({date}){label}")
    if releases:
        lines.append("")

    if has_changelog:
        lines.extend(["## Changelog", "", "- [CHANGELOG.md](./CHANGELOG.md)", ""])

    return "\n".join(lines)


def is_changelog_redirect_pattern(releases: List[GitHubRelease]) -> bool:
    """Releases that are short stubs pointing at CHANGELOG.md."""
    sample = releases[:3]
    if not sample:
        return False
    return all(
        len((r.markdown or "").strip()) < 500 and re.search(r"changelog\.md", r.markdown or "", re.IGNORECASE)
        for r in sample
    )


def _release_from_api(item: dict) -> GitHubRelease:
    return GitHubRelease(
        tag=item.get("tag_name") or item.get("tag") or "",
        name=item.get("name") or "",
        prerelease=bool(item.get("prerelease")),
        created_at=item.get("created_at") or item.get("createdAt") or "",
        published_at=item.get("published_at") or item.get("publishedAt"),
        markdown=item.get("body") or item.get("markdown") or "",
    )


class ReleaseSource:
    """Release notes for one HTTP session."""

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch_all_releases(self, owner: str, repo: str) -> List[GitHubRelease]:
        """REST API first when authenticated, ungh.cc otherwise."""
        if self.http.github_token:
            data = await self.http.fetch_json(f"{API_BASE}/repos/{owner}/{repo}/releases?per_page=100")
            if isinstance(data, list) and data:
                return [_release_from_api(item) for item in data]

        data = await self.http.fetch_json(f"{UNGH_BASE}/repos/{owner}/{repo}/releases")
        if not isinstance(data, dict):
            return []
        return [_release_from_api(item) for item in data.get("releases") or []]

    async def fetch_changelog(self, owner: str, repo: str, ref: str) -> Optional[str]:
        for filename in CHANGELOG_NAMES:
            try:
                content = await self.http.fetch_text(f"{RAW_BASE}/{owner}/{repo}/{ref}/{filename}")
            except TransientFetchError as e:
                log.debug(f"Changelog fetch failed: {e}")
                continue
            if content:
                return content
        return None

    async def fetch_release_notes(
        self,
        owner: str,
        repo: str,
        installed_version: str,
        git_ref: Optional[str] = None,
        package_name: Optional[str] = None,
    ) -> List[CachedDoc]:
        """Release docs for ``releases/``, including ``_INDEX.md``.

        Falls back to CHANGELOG.md when there are no usable releases or the
        releases only redirect to the changelog.
        """
        releases = await self.fetch_all_releases(owner, repo)
        selected = select_releases(releases, package_name, installed_version)

        if not selected:
            changelog = await self.fetch_changelog(owner, repo, git_ref or "main")
            if not changelog:
                return []
            return [
                CachedDoc("releases/CHANGELOG.md", changelog),
                CachedDoc("releases/_INDEX.md", generate_release_index([], package_name, has_changelog=True)),
            ]

        ref = git_ref or selected[0].tag
        changelog = await self.fetch_changelog(owner, repo, ref)

        if is_changelog_redirect_pattern(selected) and changelog:
            return [
                CachedDoc("releases/CHANGELOG.md", changelog),
                CachedDoc("releases/_INDEX.md", generate_release_index([], package_name, has_changelog=True)),
            ]

        tag_pkg = None
        if package_name and any(tag_matches_package(r.tag, package_name) for r in selected):
            tag_pkg = package_name
        docs = [
            CachedDoc(f"releases/{release_filename(r.tag)}.md", format_release(r, tag_pkg))
            for r in selected
        ]
        has_changelog = bool(changelog) and len(changelog) < MAX_CHANGELOG_SIZE
        if has_changelog:
            docs.append(CachedDoc("releases/CHANGELOG.md", changelog))
        docs.append(CachedDoc("releases/_INDEX.md", generate_release_index(selected, tag_pkg, has_changelog)))
        return docs
