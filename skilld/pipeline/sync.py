"""Parallel sync: resolve, cache, index and link many packages at once.

Each package runs its own pipeline under a shared concurrency limit. A
failing package is recorded in the summary and never stops its siblings.
Progress is reported only through the ``ProgressChannel``.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from skilld.cache.paths import sanitize_skill_name
from skilld.cache.store import CacheStore
from skilld.config.settings import FeaturesConfig, Settings
from skilld.core import debug as log
from skilld.core.errors import PackageSyncError, TransientFetchError
from skilld.core.lockfile import SkillInfo, write_lock
from skilld.core.yaml_lite import yaml_escape
from skilld.index.indexer import DocsIndexer
from skilld.sources.http import HttpClient
from skilld.sources.local import resolve_installed_version
from skilld.sources.models import RESOLVE_STEP_LABELS, ResolvedPackage, ResolveStep
from skilld.sources.npm import NpmSource
from skilld.sources.resolver import Resolver
from skilld.sources.urls import parse_github_url

from .events import PackageSyncState, ProgressChannel, SyncStatus
from .fetch import (
    DOCS_BATCH_SIZE,
    FetchResult,
    describe_failure,
    fetch_and_cache,
    force_clear,
    has_cached_docs,
    index_resources,
    link_all_references,
)

DEFAULT_CONCURRENCY = 5
SKILL_FILENAME = "SKILL.md"
SKILL_BODY_SECTION = "skill.md"


@dataclass
class SyncOptions:
    """Per-batch sync options."""

    cwd: Path = field(default_factory=Path.cwd)
    skills_dir: Optional[Path] = None
    concurrency: int = DEFAULT_CONCURRENCY
    force: bool = False
    features: FeaturesConfig = field(default_factory=FeaturesConfig)
    generator: str = "skilld"
    batch_size: int = DOCS_BATCH_SIZE

    @property
    def target_dir(self) -> Path:
        return Path(self.skills_dir) if self.skills_dir else Path(self.cwd) / ".claude" / "skills"


@dataclass
class PackageSyncResult:
    name: str
    version: str
    skill_dir: Path
    fetch: FetchResult
    lock: SkillInfo


@dataclass
class SyncFailure:
    name: str
    reason: str


@dataclass
class SyncSummary:
    total: int
    results: List[PackageSyncResult] = field(default_factory=list)
    failures: List[SyncFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    def describe(self) -> str:
        return f"{self.succeeded}/{self.total} packages synced"


def render_skill_body(resolved: ResolvedPackage, fetch: FetchResult) -> str:
    """SKILL.md body pointing at the linked references."""
    description = resolved.description or f"Documentation for {resolved.name}"
    lines = [
        f"# {resolved.name}",
        "",
        description,
        "",
        "## References",
        "",
    ]
    if fetch.docs_type != "readme":
        lines.append("- Docs: `./.skilld/docs/`")
    else:
        lines.append("- README: `./.skilld/pkg/README.md`")
    if fetch.has_issues:
        lines.append("- Issues: `./.skilld/issues/_INDEX.md`")
    if fetch.has_discussions:
        lines.append("- Discussions: `./.skilld/discussions/_INDEX.md`")
    if fetch.has_releases:
        lines.append("- Releases: `./.skilld/releases/_INDEX.md`")
    lines.append("")
    return "\n".join(lines)


def render_skill_md(resolved: ResolvedPackage, version: str, info: SkillInfo, body: str) -> str:
    """Lockfile frontmatter followed by the skill body."""
    description = resolved.description or f"Documentation for {resolved.name}"
    lines = [
        "---",
        f"name: {yaml_escape(sanitize_skill_name(resolved.name))}",
        f"description: {yaml_escape(description)}",
        f"packageName: {yaml_escape(resolved.name)}",
        f"version: {yaml_escape(version)}",
    ]
    if info.source:
        lines.append(f"source: {yaml_escape(info.source)}")
    lines.extend([
        f"syncedAt: {info.synced_at}",
        f"generator: {yaml_escape(info.generator or 'skilld')}",
        "---",
        "",
    ])
    return "\n".join(lines) + body


class SyncRunner:
    """Runs package pipelines against one HTTP session and cache."""

    def __init__(
        self,
        http: HttpClient,
        store: CacheStore,
        options: Optional[SyncOptions] = None,
        resolver: Optional[Resolver] = None,
        indexer: Optional[DocsIndexer] = None,
        channel: Optional[ProgressChannel] = None,
    ):
        self.http = http
        self.store = store
        self.options = options or SyncOptions()
        self.resolver = resolver or Resolver(http)
        self.indexer = indexer
        self.channel = channel or ProgressChannel()
        self._name_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        if name not in self._name_locks:
            self._name_locks[name] = asyncio.Lock()
        return self._name_locks[name]

    async def _resolve(self, name: str) -> Tuple[ResolvedPackage, Optional[str]]:
        """Resolved package plus the version installed locally, if any."""
        cwd = self.options.cwd
        local_version = await resolve_installed_version(name, cwd)

        def on_step(step: ResolveStep) -> None:
            self.channel.update(name, SyncStatus.RESOLVING, f"Trying {RESOLVE_STEP_LABELS[step]}")

        result = await self.resolver.resolve(name, version=local_version, cwd=cwd, on_step=on_step)
        resolved = result.package
        if resolved is None:
            resolved = await self.resolver.resolve_local_dep(name, cwd)
        if resolved is None:
            raise PackageSyncError(name, describe_failure(result.attempts))
        return resolved, local_version

    async def _ensure_pkg_dir(self, name: str, version: str) -> None:
        """Unpack the published tarball into the cache when the package is not installed."""
        if self.store.resolve_pkg_dir(name, self.options.cwd, version) is not None:
            return
        try:
            await NpmSource(self.http).fetch_pkg_dist(name, version, self.store.cache_dir(name, version) / "pkg")
        except TransientFetchError as e:
            log.warning(f"Package tarball for {name}@{version} unavailable: {e}")

    async def sync_one(self, name: str) -> PackageSyncResult:
        """Full pipeline for one package.

        Raises:
            PackageSyncError: when nothing could be resolved or cached
        """
        opts = self.options
        self.channel.update(name, SyncStatus.RESOLVING, "Resolving")
        resolved, local_version = await self._resolve(name)
        version = local_version or resolved.version

        if opts.force:
            force_clear(self.store, name, version)

        use_cache = has_cached_docs(self.store, name, version)
        self.channel.update(
            name, SyncStatus.DOWNLOADING, "Using cache" if use_cache else "Downloading", version=version,
        )
        fetched = await fetch_and_cache(
            self.http,
            self.store,
            name,
            resolved,
            version,
            use_cache,
            features=opts.features,
            on_progress=lambda msg: self.channel.update(name, SyncStatus.DOWNLOADING, msg),
            batch_size=opts.batch_size,
        )
        if not fetched.docs_cached:
            raise PackageSyncError(name, "No docs could be downloaded")

        if opts.features.search and self.indexer is not None:
            self.channel.update(name, SyncStatus.EMBEDDING, "Indexing")
            await index_resources(
                self.indexer,
                self.store,
                name,
                version,
                fetched.docs_to_index,
                on_progress=lambda msg: self.channel.update(name, SyncStatus.EMBEDDING, msg),
            )

        self.channel.update(name, SyncStatus.GENERATING, "Linking references")
        await self._ensure_pkg_dir(name, version)
        # Reused across projects while the cached entry stays the same
        body = self.store.read_section(name, version, SKILL_BODY_SECTION) if use_cache else None
        if body is None:
            body = render_skill_body(resolved, fetched)
            self.store.write_sections(name, version, {SKILL_BODY_SECTION: body})
        skill_dir = opts.target_dir / sanitize_skill_name(name)
        skill_dir.mkdir(parents=True, exist_ok=True)
        link_all_references(self.store, skill_dir, name, opts.cwd, version, fetched.docs_type)

        gh = parse_github_url(resolved.repo_url) if resolved.repo_url else None
        info = write_lock(opts.target_dir, skill_dir.name, SkillInfo(
            package_name=name,
            version=version,
            repo=f"{gh[0]}/{gh[1]}" if gh else None,
            source=fetched.doc_source,
            synced_at=date.today().isoformat(),
            generator=opts.generator,
            ref=resolved.git_ref,
        ))
        (skill_dir / SKILL_FILENAME).write_text(
            render_skill_md(resolved, version, info, body), encoding="utf-8",
        )

        self.channel.update(name, SyncStatus.DONE, f"Synced {name}@{version}", version=version)
        return PackageSyncResult(name, version, skill_dir, fetched, info)

    async def sync_many(self, names: List[str]) -> SyncSummary:
        """Sync ``names`` with bounded concurrency; failures are collected."""
        semaphore = asyncio.Semaphore(max(self.options.concurrency, 1))
        for name in names:
            self.channel.states.setdefault(name, PackageSyncState(name))

        async def guarded(name: str) -> PackageSyncResult:
            async with semaphore:
                async with self._lock_for(name):
                    self.channel.reset(name)
                    try:
                        return await self.sync_one(name)
                    except Exception as e:
                        reason = e.reason if isinstance(e, PackageSyncError) else str(e) or type(e).__name__
                        log.log_error(f"Sync {name}", e)
                        self.channel.update(name, SyncStatus.ERROR, reason)
                        raise

        outcomes = await asyncio.gather(*(guarded(n) for n in names), return_exceptions=True)

        summary = SyncSummary(total=len(names))
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, PackageSyncError):
                summary.failures.append(SyncFailure(name, outcome.reason))
            elif isinstance(outcome, BaseException):
                summary.failures.append(SyncFailure(name, str(outcome) or type(outcome).__name__))
            else:
                summary.results.append(outcome)

        log.info(f"SYNC: {summary.describe()}")
        return summary


async def sync_many(
    names: List[str],
    options: SyncOptions,
    settings: Optional[Settings] = None,
    channel: Optional[ProgressChannel] = None,
) -> SyncSummary:
    """Sync packages with a fresh HTTP session, cache and indexer from settings."""
    settings = settings or Settings()
    store = CacheStore(settings.cache_root)
    store.ensure_cache_dir()
    indexer = DocsIndexer(
        embedding_model=settings.index.embedding_model,
        chunk_size=settings.index.chunk_size,
        chunk_overlap=settings.index.chunk_overlap,
        ollama_base_url=settings.index.ollama_url,
        timeout=settings.index.timeout,
    )
    async with HttpClient(timeout=settings.github.timeout, github_token=settings.github_token) as http:
        runner = SyncRunner(http, store, options, indexer=indexer, channel=channel)
        return await runner.sync_many(names)
