"""Upstream documentation sources: npm, GitHub, llms.txt and local projects."""

from .github import GitHubSource, discover_doc_files, is_shallow_git_docs, validate_git_docs_with_llms
from .http import HttpClient
from .llms import download_llms_docs, fetch_llms_txt, fetch_llms_url, normalize_llms_links
from .models import (
    AttemptStatus,
    FetchedDoc,
    GitDocsResult,
    GitHubDiscussion,
    GitHubIssue,
    GitHubRelease,
    LlmsContent,
    LlmsLink,
    LocalDependency,
    NpmPackageInfo,
    ResolveAttempt,
    ResolvedPackage,
    ResolveResult,
    ResolveStep,
)
from .npm import NpmSource
from .releases import ReleaseSource
from .resolver import Resolver

__all__ = [
    # HTTP
    "HttpClient",
    # Sources
    "GitHubSource",
    "NpmSource",
    "ReleaseSource",
    "Resolver",
    # llms.txt
    "fetch_llms_url",
    "fetch_llms_txt",
    "download_llms_docs",
    "normalize_llms_links",
    # Git docs
    "discover_doc_files",
    "is_shallow_git_docs",
    "validate_git_docs_with_llms",
    # Models
    "AttemptStatus",
    "FetchedDoc",
    "GitDocsResult",
    "GitHubDiscussion",
    "GitHubIssue",
    "GitHubRelease",
    "LlmsContent",
    "LlmsLink",
    "LocalDependency",
    "NpmPackageInfo",
    "ResolveAttempt",
    "ResolvedPackage",
    "ResolveResult",
    "ResolveStep",
]
