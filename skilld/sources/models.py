"""Data models for upstream documentation sources."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ResolveStep(str, Enum):
    """Sources tried by the resolution cascade."""

    NPM = "npm"
    GITHUB_DOCS = "github-docs"
    GITHUB_META = "github-meta"
    GITHUB_SEARCH = "github-search"
    README = "readme"
    LLMS_TXT = "llms.txt"
    LOCAL = "local"


RESOLVE_STEP_LABELS: Dict[ResolveStep, str] = {
    ResolveStep.NPM: "npm registry",
    ResolveStep.GITHUB_DOCS: "GitHub docs",
    ResolveStep.GITHUB_META: "GitHub meta",
    ResolveStep.GITHUB_SEARCH: "GitHub search",
    ResolveStep.README: "README",
    ResolveStep.LLMS_TXT: "llms.txt",
    ResolveStep.LOCAL: "node_modules",
}


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not-found"
    ERROR = "error"


@dataclass
class ResolveAttempt:
    """One source tried by the cascade and how it went."""

    source: ResolveStep
    status: AttemptStatus
    url: Optional[str] = None
    message: Optional[str] = None


@dataclass
class DistTagInfo:
    version: str
    released_at: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPackage:
    """Everything the cascade learned about where a package's docs live."""

    name: str
    version: str
    description: Optional[str] = None
    repo_url: Optional[str] = None
    docs_url: Optional[str] = None
    llms_url: Optional[str] = None
    readme_url: Optional[str] = None
    git_docs_url: Optional[str] = None
    git_ref: Optional[str] = None
    git_docs_fallback: bool = False
    released_at: Optional[str] = None
    dependencies: Dict[str, str] = field(default_factory=dict)
    dist_tags: Dict[str, DistTagInfo] = field(default_factory=dict)

    @property
    def has_docs_source(self) -> bool:
        return bool(self.docs_url or self.llms_url or self.readme_url or self.git_docs_url)


@dataclass
class ResolveResult:
    package: Optional[ResolvedPackage]
    attempts: List[ResolveAttempt] = field(default_factory=list)


@dataclass
class NpmPackageInfo:
    """Subset of a registry ``package.json`` document."""

    name: str
    version: str
    description: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[object] = None  # str or {"type", "url", "directory"}
    dependencies: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict) -> "NpmPackageInfo":
        return cls(
            name=data.get("name", ""),
            version=data.get("version", ""),
            description=data.get("description"),
            homepage=data.get("homepage"),
            repository=data.get("repository"),
            dependencies=data.get("dependencies") or {},
        )


@dataclass
class GitDocsResult:
    """Markdown files found in a repository at a git ref."""

    base_url: str
    ref: str
    files: List[str]
    docs_prefix: Optional[str] = None
    # Full repo tree, only set when docs were found heuristically
    all_files: Optional[List[str]] = None
    fallback: bool = False


@dataclass
class LlmsLink:
    title: str
    url: str


@dataclass
class LlmsContent:
    raw: str
    links: List[LlmsLink] = field(default_factory=list)


@dataclass
class FetchedDoc:
    url: str
    title: str
    content: str


@dataclass
class GitHubIssue:
    number: int
    title: str
    state: str
    body: str
    created_at: str
    url: str
    labels: List[str] = field(default_factory=list)
    comments: int = 0


@dataclass
class GitHubDiscussion:
    number: int
    title: str
    body: str
    category: str
    created_at: str
    url: str
    upvote_count: int = 0
    comments: int = 0


@dataclass
class GitHubRelease:
    tag: str
    name: str
    prerelease: bool
    created_at: str
    published_at: Optional[str]
    markdown: str


@dataclass
class LocalDependency:
    name: str
    version: str
