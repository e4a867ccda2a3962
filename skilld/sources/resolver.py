"""Resolution cascade: find the best documentation source for a package.

Order: npm registry, versioned git docs, repo homepage, README, llms.txt,
local ``node_modules`` README. Every source tried appends exactly one
``ResolveAttempt``; a failing source is recorded and the cascade moves on.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from skilld.core import debug as log
from skilld.core.errors import TransientFetchError

from .github import GitHubSource, validate_git_docs_with_llms
from .http import HttpClient
from .llms import fetch_llms_txt, fetch_llms_url
from .local import find_readme, get_link_dependency_path, read_package_json, repo_url_from_manifest
from .models import (
    AttemptStatus,
    NpmPackageInfo,
    ResolveAttempt,
    ResolvedPackage,
    ResolveResult,
    ResolveStep,
)
from .npm import REGISTRY_BASE, NpmSource
from .urls import (
    is_github_repo_url,
    is_useless_docs_url,
    normalize_repo_url,
    parse_github_url,
    url_origin,
)

StepCallback = Callable[[ResolveStep], None]
PathLike = Union[str, Path]


def repo_url_from_package(pkg: NpmPackageInfo) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Repository URL from the several shapes ``repository`` takes.

    Returns:
        (repo_url, raw_repo_url, subdir)
    """
    repository = pkg.repository
    if isinstance(repository, dict) and repository.get("url"):
        raw = repository["url"]
        normalized = normalize_repo_url(raw)
        # Shorthand "owner/repo" in the url field
        if "://" not in normalized and "/" in normalized and ":" not in normalized:
            normalized = f"https://github.com/{normalized}"
        return normalized, raw, repository.get("directory")

    if isinstance(repository, str):
        if "://" in repository:
            gh = parse_github_url(repository)
            if gh:
                return f"https://github.com/{gh[0]}/{gh[1]}", None, None
            return None, None, None
        shorthand = repository[len("github:"):] if repository.startswith("github:") else repository
        if "/" in shorthand and ":" not in shorthand:
            return f"https://github.com/{shorthand}", None, None

    return None, None, None


class Resolver:
    """Runs the resolution cascade over npm, GitHub and llms.txt."""

    def __init__(self, http: HttpClient):
        self.http = http
        self.npm = NpmSource(http)
        self.github = GitHubSource(http)

    async def _resolve_github(
        self,
        owner: str,
        repo: str,
        target_version: Optional[str],
        package_name: str,
        draft: Dict[str, Any],
        attempts: List[ResolveAttempt],
        notify: StepCallback,
        raw_repo_url: Optional[str] = None,
        subdir: Optional[str] = None,
    ) -> Optional[List[str]]:
        """Git docs, then repo homepage, then README for one repository.

        Returns:
            Full repo tree when git docs were found heuristically
        """
        all_files = None
        repo_url = draft.get("repo_url")

        if target_version:
            notify(ResolveStep.GITHUB_DOCS)
            try:
                git_docs = await self.github.fetch_git_docs(owner, repo, target_version, package_name, raw_repo_url)
            except TransientFetchError as e:
                attempts.append(ResolveAttempt(ResolveStep.GITHUB_DOCS, AttemptStatus.ERROR, repo_url, str(e)))
            else:
                if git_docs:
                    draft.update(
                        git_docs_url=git_docs.base_url,
                        git_ref=git_docs.ref,
                        git_docs_fallback=git_docs.fallback,
                    )
                    all_files = git_docs.all_files
                    message = f"Found {len(git_docs.files)} docs at {git_docs.ref}"
                    if git_docs.fallback:
                        message += f" (no tag for v{target_version})"
                    attempts.append(ResolveAttempt(ResolveStep.GITHUB_DOCS, AttemptStatus.SUCCESS, git_docs.base_url, message))
                else:
                    attempts.append(ResolveAttempt(
                        ResolveStep.GITHUB_DOCS,
                        AttemptStatus.NOT_FOUND,
                        f"{repo_url}/tree/v{target_version}/docs",
                        "No docs/ folder found at version tag",
                    ))

        if not draft.get("docs_url"):
            notify(ResolveStep.GITHUB_META)
            try:
                homepage = await self.github.fetch_repo_meta(owner, repo, package_name)
            except TransientFetchError as e:
                attempts.append(ResolveAttempt(ResolveStep.GITHUB_META, AttemptStatus.ERROR, repo_url, str(e)))
            else:
                if homepage and not is_useless_docs_url(homepage):
                    draft["docs_url"] = homepage
                    attempts.append(ResolveAttempt(
                        ResolveStep.GITHUB_META, AttemptStatus.SUCCESS, repo_url, f"Found homepage: {homepage}",
                    ))
                else:
                    attempts.append(ResolveAttempt(
                        ResolveStep.GITHUB_META, AttemptStatus.NOT_FOUND, repo_url, "No homepage in repo metadata",
                    ))

        notify(ResolveStep.README)
        try:
            readme_url = await self.github.fetch_readme(owner, repo, subdir, draft.get("git_ref"))
        except TransientFetchError as e:
            attempts.append(ResolveAttempt(ResolveStep.README, AttemptStatus.ERROR, repo_url, str(e)))
        else:
            if readme_url:
                draft["readme_url"] = readme_url
                attempts.append(ResolveAttempt(ResolveStep.README, AttemptStatus.SUCCESS, readme_url))
            else:
                attempts.append(ResolveAttempt(
                    ResolveStep.README, AttemptStatus.NOT_FOUND, f"{repo_url}/README.md", "No README found",
                ))

        return all_files

    async def resolve(
        self,
        name: str,
        version: Optional[str] = None,
        cwd: Optional[PathLike] = None,
        on_step: Optional[StepCallback] = None,
    ) -> ResolveResult:
        """Resolve documentation sources for ``name``.

        Args:
            name: npm package name
            version: Installed version, used to pick versioned git docs
            cwd: Project directory for the node_modules README fallback
            on_step: Called before each source is tried

        Returns:
            ResolveResult; ``package`` is None when nothing usable was found
        """
        attempts: List[ResolveAttempt] = []

        def notify(step: ResolveStep) -> None:
            if on_step:
                on_step(step)

        registry_url = f"{REGISTRY_BASE}/{name}/latest"
        notify(ResolveStep.NPM)
        try:
            pkg = await self.npm.fetch_package(name)
        except TransientFetchError as e:
            attempts.append(ResolveAttempt(ResolveStep.NPM, AttemptStatus.ERROR, registry_url, str(e)))
            log.log_resolve_attempts(name, attempts)
            return ResolveResult(None, attempts)

        if pkg is None:
            attempts.append(ResolveAttempt(
                ResolveStep.NPM, AttemptStatus.NOT_FOUND, registry_url, "Package not found on npm registry",
            ))
            log.log_resolve_attempts(name, attempts)
            return ResolveResult(None, attempts)

        attempts.append(ResolveAttempt(
            ResolveStep.NPM, AttemptStatus.SUCCESS, registry_url, f"Found {pkg.name}@{pkg.version}",
        ))

        released_at, dist_tags = None, {}
        if pkg.version:
            try:
                released_at, dist_tags = await self.npm.fetch_registry_meta(name, pkg.version)
            except TransientFetchError as e:
                log.debug(f"Registry metadata for {name} unavailable: {e}")

        draft: Dict[str, Any] = {
            "name": pkg.name,
            "version": pkg.version,
            "description": pkg.description,
            "dependencies": pkg.dependencies,
            "released_at": released_at,
            "dist_tags": dist_tags,
        }

        repo_url, raw_repo_url, subdir = repo_url_from_package(pkg)
        draft["repo_url"] = repo_url

        if pkg.homepage and not is_github_repo_url(pkg.homepage) and not is_useless_docs_url(pkg.homepage):
            draft["docs_url"] = pkg.homepage

        target_version = version or pkg.version
        git_docs_all_files = None

        if repo_url and "github.com" in repo_url:
            gh = parse_github_url(repo_url)
            if gh:
                git_docs_all_files = await self._resolve_github(
                    gh[0], gh[1], target_version, pkg.name, draft, attempts, notify,
                    raw_repo_url=raw_repo_url, subdir=subdir,
                )
        elif not repo_url:
            notify(ResolveStep.GITHUB_SEARCH)
            try:
                searched = await self.github.search_repo(pkg.name)
            except TransientFetchError as e:
                searched = None
                attempts.append(ResolveAttempt(ResolveStep.GITHUB_SEARCH, AttemptStatus.ERROR, message=str(e)))
            else:
                if not searched:
                    attempts.append(ResolveAttempt(
                        ResolveStep.GITHUB_SEARCH,
                        AttemptStatus.NOT_FOUND,
                        message="No repository URL in package.json and GitHub search found no match",
                    ))
            if searched:
                draft["repo_url"] = searched
                attempts.append(ResolveAttempt(
                    ResolveStep.GITHUB_SEARCH, AttemptStatus.SUCCESS, searched, f"Found via GitHub search: {searched}",
                ))
                gh = parse_github_url(searched)
                if gh:
                    git_docs_all_files = await self._resolve_github(
                        gh[0], gh[1], target_version, pkg.name, draft, attempts, notify,
                    )

        if draft.get("docs_url"):
            notify(ResolveStep.LLMS_TXT)
            origin_llms = f"{url_origin(draft['docs_url'])}/llms.txt"
            try:
                llms_url = await fetch_llms_url(self.http, draft["docs_url"])
            except TransientFetchError as e:
                attempts.append(ResolveAttempt(ResolveStep.LLMS_TXT, AttemptStatus.ERROR, origin_llms, str(e)))
            else:
                if llms_url:
                    draft["llms_url"] = llms_url
                    attempts.append(ResolveAttempt(ResolveStep.LLMS_TXT, AttemptStatus.SUCCESS, llms_url))
                else:
                    attempts.append(ResolveAttempt(
                        ResolveStep.LLMS_TXT, AttemptStatus.NOT_FOUND, origin_llms, "No llms.txt at docs URL",
                    ))

        if draft.get("git_docs_url") and draft.get("llms_url") and git_docs_all_files:
            await self._validate_heuristic_git_docs(draft, git_docs_all_files, attempts)

        if cwd and not _has_source(draft):
            notify(ResolveStep.LOCAL)
            readme = find_readme(Path(cwd) / "node_modules" / name)
            if readme:
                draft["readme_url"] = readme.resolve().as_uri()
                attempts.append(ResolveAttempt(
                    ResolveStep.LOCAL, AttemptStatus.SUCCESS, str(readme), "Found local readme in node_modules",
                ))
            else:
                attempts.append(ResolveAttempt(
                    ResolveStep.LOCAL,
                    AttemptStatus.NOT_FOUND,
                    str(Path(cwd) / "node_modules" / name),
                    "No README in node_modules",
                ))

        log.log_resolve_attempts(name, attempts)

        if not _has_source(draft):
            return ResolveResult(None, attempts)
        return ResolveResult(ResolvedPackage(**draft), attempts)

    async def _validate_heuristic_git_docs(
        self,
        draft: Dict[str, Any],
        all_files: List[str],
        attempts: List[ResolveAttempt],
    ) -> None:
        """Drop heuristically found git docs that don't match llms.txt."""
        try:
            llms = await fetch_llms_txt(self.http, draft["llms_url"])
        except TransientFetchError as e:
            log.debug(f"llms.txt validation skipped: {e}")
            return
        if not llms or not llms.links:
            return

        is_valid, ratio = validate_git_docs_with_llms(llms.links, all_files)
        if is_valid:
            return

        attempts.append(ResolveAttempt(
            ResolveStep.GITHUB_DOCS,
            AttemptStatus.NOT_FOUND,
            draft["git_docs_url"],
            f"Heuristic git docs don't match llms.txt links ({round(ratio * 100)}% match), preferring llms.txt",
        ))
        draft["git_docs_url"] = None
        draft["git_ref"] = None

    async def resolve_local_package_docs(self, local_path: PathLike) -> Optional[ResolvedPackage]:
        """Resolve docs for a package checked out on disk (``link:`` deps)."""
        local_path = Path(local_path)
        pkg = await read_package_json(local_path / "package.json")
        if pkg is None:
            return None

        draft: Dict[str, Any] = {
            "name": pkg.get("name") or local_path.name,
            "version": pkg.get("version") or "0.0.0",
            "description": pkg.get("description"),
            "repo_url": repo_url_from_manifest(pkg),
        }

        repo_url = draft["repo_url"]
        if repo_url and "github.com" in repo_url:
            gh = parse_github_url(repo_url)
            if gh:
                try:
                    git_docs = await self.github.fetch_git_docs(gh[0], gh[1], draft["version"], draft["name"])
                    if git_docs:
                        draft.update(
                            git_docs_url=git_docs.base_url,
                            git_ref=git_docs.ref,
                            git_docs_fallback=git_docs.fallback,
                        )
                    readme_url = await self.github.fetch_readme(gh[0], gh[1], None, draft.get("git_ref"))
                    if readme_url:
                        draft["readme_url"] = readme_url
                except TransientFetchError as e:
                    log.warning(f"GitHub lookup for local package {draft['name']} failed: {e}")

        if not draft.get("readme_url") and not draft.get("git_docs_url"):
            readme = find_readme(local_path)
            if readme:
                draft["readme_url"] = readme.resolve().as_uri()

        if not draft.get("readme_url") and not draft.get("git_docs_url"):
            return None
        return ResolvedPackage(**draft)

    async def resolve_local_dep(self, name: str, cwd: PathLike) -> Optional[ResolvedPackage]:
        """Resolve a ``link:`` dependency declared in ``cwd/package.json``."""
        local_path = await get_link_dependency_path(name, cwd)
        if local_path is None:
            return None
        return await self.resolve_local_package_docs(local_path)


def _has_source(draft: Dict[str, Any]) -> bool:
    return bool(draft.get("docs_url") or draft.get("llms_url") or draft.get("readme_url") or draft.get("git_docs_url"))
