"""GitHub sources: versioned git docs, repo metadata, search and README.

File listings and READMEs go through ungh.cc (no rate limits); raw file
content comes from raw.githubusercontent.com; metadata and search fall back
to the GitHub REST API.
"""

import asyncio
import json
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, unquote, urlparse

import aiofiles

from skilld.core import debug as log
from skilld.core.errors import TransientFetchError

from .http import HttpClient
from .models import GitDocsResult, LlmsLink
from .urls import extract_branch_hint, parse_github_url

UNGH_BASE = "https://ungh.cc"
RAW_BASE = "https://raw.githubusercontent.com"
API_BASE = "https://api.github.com"

# Minimum git-doc file count to prefer over llms.txt
MIN_GIT_DOCS = 5

LLMS_SAMPLE_SIZE = 10
LLMS_MATCH_THRESHOLD = 0.3


def is_shallow_git_docs(count: int) -> bool:
    """Git docs exist but are too few to be useful."""
    return 0 < count < MIN_GIT_DOCS


@dataclass
class DocOverride:
    """Docs that live in a different repo than the registry points to."""
    owner: str
    repo: str
    path: str
    ref: Optional[str] = None
    homepage: Optional[str] = None


DOC_OVERRIDES: Dict[str, DocOverride] = {
    "vue": DocOverride(owner="vuejs", repo="docs", path="src", homepage="https://vuejs.org"),
    "tailwindcss": DocOverride(
        owner="tailwindlabs",
        repo="tailwindcss.com",
        path="src/docs",
        homepage="https://tailwindcss.com",
    ),
    "astro": DocOverride(
        owner="withastro",
        repo="docs",
        path="src/content/docs/en",
        homepage="https://docs.astro.build",
    ),
    "@vueuse/core": DocOverride(owner="vueuse", repo="vueuse", path="packages"),
}

# Never documentation
NOISE_PREFIXES = (".changeset/", ".github/")
NOISE_SUFFIXES = ("changelog.md", "contributing.md")

EXCLUDE_DIRS = {
    "test",
    "tests",
    "__tests__",
    "fixtures",
    "fixture",
    "examples",
    "example",
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    "e2e",
    "spec",
    "mocks",
    "__mocks__",
}

DOC_DIR_BONUS = {
    "docs",
    "documentation",
    "pages",
    "content",
    "website",
    "guide",
    "guides",
    "wiki",
    "manual",
    "api",
}

README_NAMES = ("README.md", "Readme.md", "readme.md")


def get_doc_override(package_name: str) -> Optional[DocOverride]:
    return DOC_OVERRIDES.get(package_name)


def _is_markdown(path: str) -> bool:
    return path.endswith(".md") or path.endswith(".mdx")


def _is_noise(path: str) -> bool:
    lower = path.lower()
    return path.startswith(NOISE_PREFIXES) or lower.endswith(NOISE_SUFFIXES)


def filter_doc_files(files: Iterable[str], prefix: str) -> List[str]:
    return [f for f in files if f.startswith(prefix) and _is_markdown(f)]


def _score_doc_dir(directory: str, file_count: int) -> float:
    """``count * name bonus / depth``; higher is more doc-like."""
    parts = [p for p in directory.split("/") if p]
    depth = len(parts) or 1
    bonus = 1.5 if any(p.lower() in DOC_DIR_BONUS for p in parts) else 1.0
    return file_count * bonus / depth


def discover_doc_files(all_files: List[str]) -> Optional[Tuple[List[str], str]]:
    """Find docs outside a top-level ``docs/`` folder.

    First looks for clusters under a nested ``/docs/`` directory (at least
    3 files), then for the best-scoring directory with at least 5 files.

    Returns:
        (files, prefix to strip when caching) or None
    """
    md_files = [
        f for f in all_files
        if _is_markdown(f) and not _is_noise(f) and "/" in f
    ]

    docs_groups: Dict[str, List[str]] = defaultdict(list)
    for f in md_files:
        idx = f.rfind("/docs/")
        if idx == -1:
            continue
        docs_groups[f[:idx + len("/docs/")]].append(f)

    if docs_groups:
        prefix, files = max(docs_groups.items(), key=lambda item: len(item[1]))
        if len(files) >= 3:
            docs_idx = prefix.rfind("docs/")
            return files, prefix[:docs_idx] if docs_idx > 0 else ""

    dir_groups: Dict[str, List[str]] = defaultdict(list)
    for f in md_files:
        if any(p.lower() in EXCLUDE_DIRS for p in f.split("/")):
            continue
        dir_groups[f[:f.rfind("/") + 1]].append(f)

    scored = [
        (_score_doc_dir(d, len(files)), d, files)
        for d, files in dir_groups.items()
        if len(files) >= 5
    ]
    if not scored:
        return None

    _, best_dir, best_files = max(scored, key=lambda item: item[0])
    return best_files, best_dir


def _strip_ext(path: str) -> str:
    path = path[1:] if path.startswith("/") else path
    for ext in (".mdx", ".md"):
        if path.endswith(ext):
            return path[:-len(ext)]
    return path


def validate_git_docs_with_llms(llms_links: List[LlmsLink], repo_files: List[str]) -> Tuple[bool, float]:
    """Cross-check heuristic git docs against llms.txt links.

    Extensionless suffix matching over a sample of links handles monorepo
    nesting.

    Returns:
        (is_valid, match_ratio)
    """
    if not llms_links:
        return True, 1.0

    sample = llms_links[:LLMS_SAMPLE_SIZE]
    repo_paths = {_strip_ext(f) for f in repo_files}

    matches = 0
    for link in sample:
        path = link.url
        if path.startswith("http"):
            path = urlparse(path).path
        link_path = _strip_ext(path)
        if any(p == link_path or p.endswith(f"/{link_path}") for p in repo_paths):
            matches += 1

    ratio = matches / len(sample)
    return ratio >= LLMS_MATCH_THRESHOLD, ratio


class GitHubSource:
    """Git-hosted docs and metadata for one HTTP session."""

    def __init__(self, http: HttpClient):
        self.http = http

    async def list_files_at_ref(self, owner: str, repo: str, ref: str) -> List[str]:
        data = await self.http.fetch_json(f"{UNGH_BASE}/repos/{owner}/{repo}/files/{ref}")
        if not isinstance(data, dict):
            return []
        return [f["path"] for f in data.get("files") or [] if "path" in f]

    async def find_latest_release_tag(self, owner: str, repo: str, package_name: str) -> Optional[str]:
        """Latest ``{package}@*`` release tag, for monorepo version drift."""
        data = await self.http.fetch_json(f"{UNGH_BASE}/repos/{owner}/{repo}/releases")
        if not isinstance(data, dict):
            return None
        prefix = f"{package_name}@"
        for release in data.get("releases") or []:
            tag = release.get("tag", "")
            if tag.startswith(prefix):
                return tag
        return None

    async def find_git_tag(
        self,
        owner: str,
        repo: str,
        version: str,
        package_name: Optional[str] = None,
        branch_hint: Optional[str] = None,
    ) -> Optional[Tuple[str, List[str], bool]]:
        """Find a ref with files for ``version``.

        Tries ``v{version}``, ``{version}``, ``{package}@{version}``, the latest
        ``{package}@*`` release, then the default branch.

        Returns:
            (ref, files, is_branch_fallback) or None
        """
        candidates = [f"v{version}", version]
        if package_name:
            candidates.append(f"{package_name}@{version}")

        for tag in candidates:
            files = await self.list_files_at_ref(owner, repo, tag)
            if files:
                return tag, files, False

        if package_name:
            latest = await self.find_latest_release_tag(owner, repo, package_name)
            if latest:
                files = await self.list_files_at_ref(owner, repo, latest)
                if files:
                    return latest, files, False

        branches = ["main", "master"]
        if branch_hint:
            branches = [branch_hint] + [b for b in branches if b != branch_hint]
        for branch in branches:
            files = await self.list_files_at_ref(owner, repo, branch)
            if files:
                return branch, files, True

        return None

    async def fetch_git_docs(
        self,
        owner: str,
        repo: str,
        version: str,
        package_name: Optional[str] = None,
        repo_url: Optional[str] = None,
    ) -> Optional[GitDocsResult]:
        """Markdown docs in the repository at the tag matching ``version``."""
        override = get_doc_override(package_name) if package_name else None
        if override:
            ref = override.ref or "main"
            files = filter_doc_files(
                await self.list_files_at_ref(override.owner, override.repo, ref),
                f"{override.path}/",
            )
            if not files:
                return None
            return GitDocsResult(
                base_url=f"{RAW_BASE}/{override.owner}/{override.repo}/{ref}",
                ref=ref,
                files=files,
                fallback=override.ref is None,
            )

        branch_hint = extract_branch_hint(repo_url) if repo_url else None
        tag = await self.find_git_tag(owner, repo, version, package_name, branch_hint)
        if not tag:
            return None
        ref, tree, fallback = tag

        docs = filter_doc_files(tree, "docs/")
        docs_prefix = None
        all_files = None

        if not docs:
            discovered = discover_doc_files(tree)
            if discovered:
                docs, prefix = discovered
                docs_prefix = prefix or None
                all_files = tree

        if not docs:
            return None

        return GitDocsResult(
            base_url=f"{RAW_BASE}/{owner}/{repo}/{ref}",
            ref=ref,
            files=docs,
            docs_prefix=docs_prefix,
            all_files=all_files,
            fallback=fallback,
        )

    async def fetch_repo_meta(self, owner: str, repo: str, package_name: Optional[str] = None) -> Optional[str]:
        """Repository homepage, from an override or the REST API."""
        override = get_doc_override(package_name) if package_name else None
        if override and override.homepage:
            return override.homepage

        data = await self.http.fetch_json(f"{API_BASE}/repos/{owner}/{repo}")
        if isinstance(data, dict) and data.get("homepage"):
            return data["homepage"]
        return None

    async def _verify_npm_repo(self, owner: str, repo: str, package_name: str) -> bool:
        """Check the repo's package.json (root or common monorepo paths) names the package."""
        short_name = package_name.split("/")[-1]
        paths = [
            "package.json",
            f"packages/{short_name}/package.json",
            f"packages/{package_name.lstrip('@').replace('/', '-')}/package.json",
        ]
        for path in paths:
            data = await self.http.fetch_json(f"{RAW_BASE}/{owner}/{repo}/HEAD/{path}")
            if isinstance(data, dict) and data.get("name") == package_name:
                return True
        return False

    async def search_repo(self, package_name: str) -> Optional[str]:
        """Find the GitHub repository of a package with no repository field."""
        short_name = package_name.split("/")[-1]

        scoped = package_name.lstrip("@")
        if "/" in scoped:
            if await self.http.exists(f"{UNGH_BASE}/repos/{scoped}"):
                return f"https://github.com/{scoped}"
        elif await self.http.exists(f"{UNGH_BASE}/repos/{short_name}/{short_name}"):
            return f"https://github.com/{short_name}/{short_name}"

        query = quote(f"{scoped} in:name")
        data = await self.http.fetch_json(f"{API_BASE}/search/repositories?q={query}&per_page=5")
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            return None

        suffixes = (f"/{package_name.lower()}", f"/{short_name.lower()}")
        for item in items:
            if item.get("full_name", "").lower().endswith(suffixes):
                return f"https://github.com/{item['full_name']}"

        for item in items:
            gh = parse_github_url(f"https://github.com/{item.get('full_name', '')}")
            if gh and await self._verify_npm_repo(gh[0], gh[1], package_name):
                return f"https://github.com/{item['full_name']}"

        return None

    async def fetch_readme(
        self,
        owner: str,
        repo: str,
        subdir: Optional[str] = None,
        ref: Optional[str] = None,
    ) -> Optional[str]:
        """README location: an ``ungh://`` pseudo-URL or a raw URL."""
        branch = ref or "main"
        if subdir:
            ungh_url = f"{UNGH_BASE}/repos/{owner}/{repo}/files/{branch}/{subdir}/README.md"
        else:
            ungh_url = f"{UNGH_BASE}/repos/{owner}/{repo}/readme" + (f"?ref={ref}" if ref else "")

        if await self.http.exists(ungh_url):
            return f"ungh://{owner}/{repo}" + (f"/{subdir}" if subdir else "") + (f"@{ref}" if ref else "")

        base_path = f"{subdir}/" if subdir else ""
        # raw.githubusercontent.com sometimes answers HEAD with HTML, so GET
        for b in ([ref] if ref else ["main", "master"]):
            for filename in README_NAMES:
                readme_url = f"{RAW_BASE}/{owner}/{repo}/{b}/{base_path}{filename}"
                if await self.http.exists(readme_url):
                    return readme_url

        return None

    async def fetch_readme_content(self, url: str) -> Optional[str]:
        """Read a README from a ``file://``, ``ungh://`` or plain URL."""
        if url.startswith("file://"):
            path = Path(unquote(urlparse(url).path))
            if not path.exists():
                return None
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                return await f.read()

        if url.startswith("ungh://"):
            path = url[len("ungh://"):]
            ref = "main"
            at = path.rfind("@")
            if at != -1:
                ref = path[at + 1:]
                path = path[:at]

            parts = path.split("/")
            owner, repo = parts[0], parts[1]
            subdir = "/".join(parts[2:])
            if subdir:
                ungh_url = f"{UNGH_BASE}/repos/{owner}/{repo}/files/{ref}/{subdir}/README.md"
            else:
                ungh_url = f"{UNGH_BASE}/repos/{owner}/{repo}/readme?ref={ref}"

            text = await self.http.fetch_text(ungh_url)
            if not text:
                return None
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                return text
            if not isinstance(data, dict):
                return text
            return data.get("markdown") or (data.get("file") or {}).get("contents") or None

        return await self.http.fetch_text(url)

    async def fetch_doc_files(self, git_docs: GitDocsResult, files: List[str]) -> List[Tuple[str, Optional[str]]]:
        """Download raw file content for ``files`` concurrently."""
        async def one(file: str) -> Tuple[str, Optional[str]]:
            try:
                return file, await self.http.fetch_text(f"{git_docs.base_url}/{file}")
            except TransientFetchError as e:
                log.warning(f"Git doc download failed: {e}")
                return file, None

        return list(await asyncio.gather(*(one(f) for f in files)))
