"""Fetch a resolved package's documentation into the reference cache.

Docs come from the first source that yields content: versioned git docs,
then llms.txt (with its linked pages), then the README. A source that
fails on the network falls through to the next. Issues, discussions and
releases are fetched once primary docs exist, each guarded by its own
cache directory so reruns only fill in what is missing.
"""

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from skilld.cache.paths import get_package_db_path
from skilld.cache.store import CachedDoc, CacheStore, LinkResult
from skilld.config.settings import FeaturesConfig
from skilld.core import debug as log
from skilld.core.errors import TransientFetchError
from skilld.core.sanitize import sanitize_markdown
from skilld.index.indexer import DocsIndexer, IndexDoc, IndexProgress
from skilld.sources.discussions import (
    discussion_search_text,
    fetch_github_discussions,
    format_discussion_as_markdown,
    generate_discussion_index,
)
from skilld.sources.github import GitHubSource, is_shallow_git_docs
from skilld.sources.http import HttpClient
from skilld.sources.issues import (
    fetch_github_issues,
    format_issue_as_markdown,
    generate_issue_index,
    issue_search_text,
)
from skilld.sources.llms import download_llms_docs, fetch_llms_txt, local_doc_path, normalize_llms_links
from skilld.sources.models import AttemptStatus, LlmsContent, ResolveAttempt, ResolvedPackage, ResolveStep
from skilld.sources.releases import ReleaseSource
from skilld.sources.urls import parse_github_url, url_origin

DOCS_BATCH_SIZE = 20
ISSUE_LIMIT = 30
DISCUSSION_LIMIT = 20

DOCS_TYPE_DOCS = "docs"
DOCS_TYPE_LLMS = "llms.txt"
DOCS_TYPE_README = "readme"

ProgressFn = Callable[[str], None]

_ISSUE_PATH_RE = re.compile(r"^issues/issue-(\d+)\.md$")
_DISCUSSION_PATH_RE = re.compile(r"^discussions/discussion-(\d+)\.md$")


@dataclass
class FetchResult:
    doc_source: str
    docs_type: str
    docs_to_index: List[IndexDoc] = field(default_factory=list)
    has_issues: bool = False
    has_discussions: bool = False
    has_releases: bool = False
    docs_cached: bool = True


def _noop(message: str) -> None:
    pass


def classify_cached_doc(path: str) -> Dict[str, Any]:
    """Index metadata type (and number) for a cache-relative path."""
    match = _ISSUE_PATH_RE.match(path)
    if match:
        return {"type": "issue", "number": int(match.group(1))}
    match = _DISCUSSION_PATH_RE.match(path)
    if match:
        return {"type": "discussion", "number": int(match.group(1))}
    if path.startswith("releases/"):
        return {"type": "release"}
    return {"type": "doc"}


def detect_docs_type(
    store: CacheStore,
    name: str,
    version: str,
    repo_url: Optional[str] = None,
    llms_url: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Docs type of an existing cache entry, from what is on disk.

    Returns:
        (docs_type, doc_source or None)
    """
    cache_dir = store.cache_dir(name, version)
    if (cache_dir / "docs" / "index.md").exists() or (cache_dir / "docs" / "guide").exists():
        return DOCS_TYPE_DOCS, f"{repo_url}/tree/v{version}/docs" if repo_url else "git"
    if (cache_dir / "llms.txt").exists():
        return DOCS_TYPE_LLMS, llms_url or "llms.txt"
    return DOCS_TYPE_README, None


def describe_failure(attempts: List[ResolveAttempt]) -> str:
    """Actionable reason for a package that resolved to nothing."""
    for attempt in attempts:
        if attempt.source == ResolveStep.NPM and attempt.status == AttemptStatus.NOT_FOUND:
            return attempt.message or "Package not found on npm registry"
    messages = [a.message for a in attempts if a.status != AttemptStatus.SUCCESS and a.message]
    if messages:
        return "; ".join(messages)
    return "No docs found"


def git_doc_cache_path(file: str, docs_prefix: Optional[str]) -> str:
    """Where a git doc lands in the cache entry; always under ``docs/``."""
    path = file[len(docs_prefix):] if docs_prefix and file.startswith(docs_prefix) else file
    return path if path.startswith("docs/") else f"docs/{path}"


def _doc(package: str, doc_id: str, content: str, source: str, **meta: Any) -> IndexDoc:
    return IndexDoc(id=doc_id, content=content, metadata={"package": package, "source": source, **meta})


async def _download_git_docs(
    github: GitHubSource,
    resolved: ResolvedPackage,
    package_name: str,
    version: str,
    batch_size: int,
    on_progress: ProgressFn,
) -> Optional[Tuple[str, List[CachedDoc]]]:
    """Download versioned git docs in batches.

    Returns:
        (git ref, docs with cache paths) or None when there are none
    """
    gh = parse_github_url(resolved.repo_url)
    if not gh:
        return None

    on_progress("Fetching git docs")
    git_docs = await github.fetch_git_docs(gh[0], gh[1], version, package_name, resolved.repo_url)
    if not git_docs or not git_docs.files:
        return None

    docs = []
    total = len(git_docs.files)
    for start in range(0, total, batch_size):
        batch = git_docs.files[start:start + batch_size]
        on_progress(f"Downloading docs {min(start + batch_size, total)}/{total} from {git_docs.ref}")
        for file, content in await github.fetch_doc_files(git_docs, batch):
            if content:
                docs.append(CachedDoc(git_doc_cache_path(file, git_docs.docs_prefix), content))

    return git_docs.ref, docs


async def _llms_docs(
    http: HttpClient,
    llms: LlmsContent,
    base_url: str,
    subdir: str,
    label: str,
    on_progress: ProgressFn,
) -> List[Tuple[str, CachedDoc]]:
    """Linked llms.txt pages as ``(link url, cached doc)`` pairs under ``subdir``."""
    if not llms.links:
        return []
    on_progress(f"Downloading {len(llms.links)} {label} docs")
    fetched = await download_llms_docs(
        http,
        llms,
        base_url,
        lambda url, done, total: on_progress(f"Downloading {label} doc {done + 1}/{total}"),
    )
    return [(doc.url, CachedDoc(f"{subdir}/{local_doc_path(doc.url)}", doc.content)) for doc in fetched]


async def _guarded(label: str, step: Awaitable[Any]) -> Any:
    """Await one source step; a transient failure falls through as None."""
    try:
        return await step
    except TransientFetchError as e:
        log.log_error(label, e)
        return None


async def _supplementary_llms(
    http: HttpClient,
    resolved: ResolvedPackage,
    on_progress: ProgressFn,
) -> List[CachedDoc]:
    """llms.txt and its linked pages kept under ``llms-docs/`` next to git docs."""
    llms = await fetch_llms_txt(http, resolved.llms_url)
    if not llms:
        return []
    base_url = resolved.docs_url or url_origin(resolved.llms_url)
    docs = [CachedDoc("llms.txt", normalize_llms_links(llms.raw, base_url))]
    linked = await _llms_docs(http, llms, base_url, "llms-docs", "supplementary", on_progress)
    docs.extend(doc for _, doc in linked)
    return docs


def has_cached_docs(store: CacheStore, name: str, version: str) -> bool:
    """Whether the entry holds primary docs, not just issues or releases."""
    cache_dir = store.cache_dir(name, version)
    return (cache_dir / "docs").is_dir() or (cache_dir / "llms.txt").exists()


async def fetch_and_cache(
    http: HttpClient,
    store: CacheStore,
    package_name: str,
    resolved: ResolvedPackage,
    version: str,
    use_cache: bool,
    features: Optional[FeaturesConfig] = None,
    on_progress: Optional[ProgressFn] = None,
    batch_size: int = DOCS_BATCH_SIZE,
) -> FetchResult:
    """Fetch docs and auxiliary resources for one package into the cache.

    A transient network failure in one doc source falls through to the
    next. Auxiliary resources are only fetched once primary docs exist.

    Args:
        http: Open HTTP client
        store: Reference cache
        package_name: Package being synced
        resolved: Cascade result for the package
        version: Cache version key
        use_cache: Entry already exists; only detect its type and collect
            docs for indexing
        features: Which auxiliary resources to fetch
        on_progress: Receives human-readable progress messages
        batch_size: Git doc downloads per batch

    Returns:
        FetchResult describing what was cached and what to index
    """
    features = features or FeaturesConfig()
    on_progress = on_progress or _noop
    github = GitHubSource(http)

    doc_source = resolved.readme_url or "readme"
    docs_type = DOCS_TYPE_README
    docs_to_index: List[IndexDoc] = []

    if not use_cache:
        collected: List[CachedDoc] = []

        if resolved.git_docs_url and resolved.repo_url:
            downloaded = await _guarded(
                f"Git docs for {package_name}",
                _download_git_docs(github, resolved, package_name, version, batch_size, on_progress),
            )
            if downloaded and downloaded[1]:
                ref, docs = downloaded
                if is_shallow_git_docs(len(docs)) and resolved.llms_url:
                    on_progress(f"Shallow git-docs ({len(docs)} files), trying llms.txt")
                else:
                    doc_source = f"{resolved.repo_url}/tree/{ref}/docs"
                    docs_type = DOCS_TYPE_DOCS
                    collected.extend(docs)
                    for doc in docs:
                        docs_to_index.append(_doc(package_name, doc.path, doc.content, doc.path, type="doc"))

                    # llms.txt kept alongside good git docs as a supplementary reference
                    if resolved.llms_url:
                        on_progress("Caching supplementary llms.txt")
                        supplementary = await _guarded(
                            f"Supplementary llms.txt for {package_name}",
                            _supplementary_llms(http, resolved, on_progress),
                        )
                        collected.extend(supplementary or [])

        if resolved.llms_url and not collected:
            on_progress("Fetching llms.txt")
            llms = await _guarded(f"llms.txt for {package_name}", fetch_llms_txt(http, resolved.llms_url))
            if llms:
                doc_source = resolved.llms_url
                base_url = resolved.docs_url or url_origin(resolved.llms_url)
                collected.append(CachedDoc("llms.txt", normalize_llms_links(llms.raw, base_url)))
                linked = await _llms_docs(http, llms, base_url, "docs", "linked", on_progress)
                for url, doc in linked:
                    collected.append(doc)
                    docs_to_index.append(_doc(package_name, url, doc.content, doc.path, type="doc"))
                docs_type = DOCS_TYPE_DOCS if linked else DOCS_TYPE_LLMS

        if resolved.readme_url and not collected:
            on_progress("Fetching README")
            content = await _guarded(
                f"README for {package_name}", github.fetch_readme_content(resolved.readme_url),
            )
            if content:
                collected.append(CachedDoc("docs/README.md", content))
                docs_to_index.append(_doc(package_name, "README.md", content, "docs/README.md", type="doc"))

        if not collected:
            return FetchResult(doc_source=doc_source, docs_type=docs_type, docs_cached=False)
        store.write(package_name, version, collected)
    else:
        docs_type, detected_source = detect_docs_type(
            store, package_name, version, resolved.repo_url, resolved.llms_url,
        )
        if detected_source:
            doc_source = detected_source

        # Cached docs only need collecting when the index has not been built
        if not get_package_db_path(store.root, package_name, version).exists():
            for doc in store.read(package_name, version):
                docs_to_index.append(_doc(
                    package_name, doc.path, doc.content, doc.path, **classify_cached_doc(doc.path),
                ))

    cache_dir = store.cache_dir(package_name, version)
    gh = parse_github_url(resolved.repo_url) if resolved.repo_url else None

    if features.issues and gh and not (cache_dir / "issues").exists():
        docs_to_index.extend(await _cache_issues(http, store, package_name, version, gh, on_progress))

    if features.discussions and gh and not (cache_dir / "discussions").exists():
        docs_to_index.extend(await _cache_discussions(http, store, package_name, version, gh, on_progress))

    if features.releases and gh and not (cache_dir / "releases").exists():
        docs_to_index.extend(await _cache_releases(http, store, package_name, resolved, version, gh, on_progress))

    return FetchResult(
        doc_source=doc_source,
        docs_type=docs_type,
        docs_to_index=docs_to_index,
        has_issues=(cache_dir / "issues").exists(),
        has_discussions=(cache_dir / "discussions").exists(),
        has_releases=(cache_dir / "releases").exists(),
    )


async def _cache_issues(
    http: HttpClient,
    store: CacheStore,
    package_name: str,
    version: str,
    gh: Tuple[str, str],
    on_progress: ProgressFn,
) -> List[IndexDoc]:
    on_progress("Fetching issues via GitHub API")
    try:
        issues = await fetch_github_issues(http, gh[0], gh[1], ISSUE_LIMIT)
    except TransientFetchError as e:
        log.log_error(f"Issues for {package_name}", e)
        return []
    if not issues:
        return []

    on_progress(f"Caching {len(issues)} issues")
    docs = [CachedDoc(f"issues/issue-{i.number}.md", format_issue_as_markdown(i)) for i in issues]
    docs.append(CachedDoc("issues/_INDEX.md", generate_issue_index(issues)))
    store.write(package_name, version, docs)
    return [
        _doc(
            package_name,
            f"issue-{i.number}",
            sanitize_markdown(issue_search_text(i)),
            f"issues/issue-{i.number}.md",
            type="issue",
            number=i.number,
        )
        for i in issues
    ]


async def _cache_discussions(
    http: HttpClient,
    store: CacheStore,
    package_name: str,
    version: str,
    gh: Tuple[str, str],
    on_progress: ProgressFn,
) -> List[IndexDoc]:
    on_progress("Fetching discussions via GitHub API")
    try:
        discussions = await fetch_github_discussions(http, gh[0], gh[1], DISCUSSION_LIMIT)
    except TransientFetchError as e:
        log.log_error(f"Discussions for {package_name}", e)
        return []
    if not discussions:
        return []

    on_progress(f"Caching {len(discussions)} discussions")
    docs = [
        CachedDoc(f"discussions/discussion-{d.number}.md", format_discussion_as_markdown(d))
        for d in discussions
    ]
    docs.append(CachedDoc("discussions/_INDEX.md", generate_discussion_index(discussions)))
    store.write(package_name, version, docs)
    return [
        _doc(
            package_name,
            f"discussion-{d.number}",
            sanitize_markdown(discussion_search_text(d)),
            f"discussions/discussion-{d.number}.md",
            type="discussion",
            number=d.number,
        )
        for d in discussions
    ]


async def _cache_releases(
    http: HttpClient,
    store: CacheStore,
    package_name: str,
    resolved: ResolvedPackage,
    version: str,
    gh: Tuple[str, str],
    on_progress: ProgressFn,
) -> List[IndexDoc]:
    on_progress("Fetching releases via GitHub API")
    try:
        release_docs = await ReleaseSource(http).fetch_release_notes(
            gh[0], gh[1], version, resolved.git_ref, package_name,
        )
    except TransientFetchError as e:
        log.log_error(f"Releases for {package_name}", e)
        return []
    if not release_docs:
        return []

    on_progress(f"Caching {len(release_docs)} releases")
    store.write(package_name, version, release_docs)
    return [_doc(package_name, d.path, d.content, d.path, type="release") for d in release_docs]


async def index_resources(
    indexer: DocsIndexer,
    store: CacheStore,
    package_name: str,
    version: str,
    docs_to_index: List[IndexDoc],
    on_progress: Optional[ProgressFn] = None,
) -> int:
    """Build the package's search index unless its database already exists.

    Returns:
        Chunks stored (0 when skipped)
    """
    on_progress = on_progress or _noop
    db_path = get_package_db_path(store.root, package_name, version)
    if db_path.exists() or not docs_to_index:
        return 0

    on_progress(f"Building search index ({len(docs_to_index)} docs)")

    def report(progress: IndexProgress) -> None:
        if progress.phase == "embedding":
            on_progress(f"Creating embeddings ({progress.current}/{progress.total})")
        else:
            on_progress(f"Storing chunks ({progress.current}/{progress.total})")

    return await indexer.create_index(docs_to_index, db_path, on_progress=report)


def force_clear(store: CacheStore, package_name: str, version: str) -> None:
    """Drop the cache entry and search database for ``name@version``."""
    store.clear(package_name, version)
    db_path = get_package_db_path(store.root, package_name, version)
    if db_path.is_dir():
        shutil.rmtree(db_path)
    elif db_path.exists():
        db_path.unlink()


def link_all_references(
    store: CacheStore,
    skill_dir: Path,
    package_name: str,
    cwd: Path,
    version: str,
    docs_type: str,
) -> List[LinkResult]:
    """Project package dir and cached subdirs into ``<skill_dir>/.skilld/``.

    README-only entries don't get a ``docs`` link since the skill itself is
    generated from the README.
    """
    results = [store.link_pkg(skill_dir, package_name, cwd, version)]
    subdirs = ["issues", "discussions", "releases", "sections"]
    if docs_type != DOCS_TYPE_README:
        subdirs.insert(0, "docs")
    for subdir in subdirs:
        results.append(store.link_into(skill_dir, package_name, version, subdir))
    return results
