"""URL helpers shared by the upstream sources."""

import re
from typing import Optional, Tuple
from urllib.parse import urlparse

# Social media and registry pages are never real documentation
USELESS_HOSTS = {
    "twitter.com",
    "x.com",
    "facebook.com",
    "linkedin.com",
    "youtube.com",
    "instagram.com",
    "npmjs.com",
    "www.npmjs.com",
    "yarnpkg.com",
}

GITHUB_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:[/#]|$)")


def is_useless_docs_url(url: str) -> bool:
    try:
        return urlparse(url).hostname in USELESS_HOSTS
    except ValueError:
        return False


def is_github_repo_url(url: str) -> bool:
    try:
        return urlparse(url).hostname in ("github.com", "www.github.com")
    except ValueError:
        return False


def parse_github_url(url: str) -> Optional[Tuple[str, str]]:
    """Extract ``(owner, repo)`` from any GitHub URL."""
    match = GITHUB_URL_RE.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def normalize_repo_url(url: str) -> str:
    """Normalize a package.json repository URL to plain https."""
    url = re.sub(r"^git\+", "", url)
    url = re.sub(r"#.*$", "", url)
    url = re.sub(r"\.git$", "", url)
    url = re.sub(r"^git://", "https://", url)
    return re.sub(r"^ssh://git@github\.com", "https://github.com", url)


def extract_branch_hint(url: str) -> Optional[str]:
    """Branch from a URL fragment (``git+https://...#main`` gives ``main``)."""
    _, sep, fragment = url.partition("#")
    if not sep or not fragment or fragment == "readme":
        return None
    return fragment


def url_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
