"""llms.txt discovery, parsing and linked-doc download."""

import asyncio
import re
from typing import Callable, List, Optional
from urllib.parse import urlparse

from skilld.core import debug as log
from skilld.core.errors import TransientFetchError

from .http import HttpClient
from .models import FetchedDoc, LlmsContent, LlmsLink
from .urls import url_origin

MIN_LLMS_LENGTH = 50
MIN_LINKED_DOC_LENGTH = 100
DOWNLOAD_CONCURRENCY = 5

MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+\.md)\)")
_PRIVATE_V4_RE = re.compile(r"^(?:10\.|172\.(?:1[6-9]|2\d|3[01])\.|192\.168\.)")


async def fetch_llms_url(http: HttpClient, docs_url: str) -> Optional[str]:
    """Return ``<origin>/llms.txt`` when it exists and is not an HTML page."""
    llms_url = f"{url_origin(docs_url)}/llms.txt"
    if await http.verify_url(llms_url):
        return llms_url
    return None


async def fetch_llms_txt(http: HttpClient, url: str) -> Optional[LlmsContent]:
    content = await http.fetch_text(url)
    if not content or len(content) < MIN_LLMS_LENGTH:
        return None
    return LlmsContent(raw=content, links=parse_markdown_links(content))


def parse_markdown_links(content: str) -> List[LlmsLink]:
    """Collect unique ``[title](path.md)`` links in order of appearance."""
    links = []
    seen = set()
    for match in MARKDOWN_LINK_RE.finditer(content):
        url = match.group(2)
        if url not in seen:
            seen.add(url)
            links.append(LlmsLink(title=match.group(1), url=url))
    return links


def is_safe_url(url: str) -> bool:
    """Only https, and never loopback, link-local or private hosts."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme != "https":
        return False
    host = parsed.hostname or ""
    if not host or host in ("localhost", "127.0.0.1", "::1"):
        return False
    # Cloud metadata endpoint
    if host == "169.254.169.254":
        return False
    if _PRIVATE_V4_RE.match(host):
        return False
    # IPv6 literal
    if ":" in host:
        return False
    return True


def resolve_link_url(link_url: str, base_url: str) -> str:
    if link_url.startswith("http"):
        return link_url
    sep = "" if link_url.startswith("/") else "/"
    return f"{base_url.rstrip('/')}{sep}{link_url}"


async def download_llms_docs(
    http: HttpClient,
    llms: LlmsContent,
    base_url: str,
    on_progress: Optional[Callable[[str, int, int], None]] = None,
) -> List[FetchedDoc]:
    """Download every ``.md`` file linked from llms.txt.

    Unsafe URLs, failed fetches and near-empty files are dropped.

    Args:
        http: Open HTTP client
        llms: Parsed llms.txt
        base_url: Base for relative links
        on_progress: Called with (link, index, total) per download

    Returns:
        Docs in link order
    """
    semaphore = asyncio.Semaphore(DOWNLOAD_CONCURRENCY)
    total = len(llms.links)
    completed = 0

    async def download(link: LlmsLink) -> Optional[FetchedDoc]:
        nonlocal completed
        url = resolve_link_url(link.url, base_url)
        if not is_safe_url(url):
            log.debug(f"Skipping unsafe llms link: {url}")
            return None

        async with semaphore:
            if on_progress:
                on_progress(link.url, completed, total)
            completed += 1
            try:
                content = await http.fetch_text(url)
            except TransientFetchError as e:
                log.warning(f"llms linked doc failed: {e}")
                return None

        if content and len(content) > MIN_LINKED_DOC_LENGTH:
            return FetchedDoc(url=link.url, title=link.title, content=content)
        return None

    results = await asyncio.gather(*(download(link) for link in llms.links))
    return [doc for doc in results if doc is not None]


def normalize_llms_links(content: str, base_url: Optional[str] = None) -> str:
    """Rewrite llms.txt links to point at the local ``./docs/`` copies.

    Absolute links under ``base_url`` and root-relative links are
    rewritten; other links are left alone.
    """
    normalized = content

    if base_url:
        base = re.escape(base_url.rstrip("/"))
        normalized = re.sub(rf"\]\({base}(/[^)]+\.md)\)", r"](./docs\1)", normalized)

    return re.sub(r"\]\(/([^)]+\.md)\)", r"](./docs/\1)", normalized)


def local_doc_path(link_url: str) -> str:
    """Cache-relative path for a downloaded llms link (leading slash dropped)."""
    if link_url.startswith("http"):
        link_url = urlparse(link_url).path
    return link_url.lstrip("/")
