import pytest

from skilld.sources.llms import (
    download_llms_docs,
    fetch_llms_txt,
    fetch_llms_url,
    is_safe_url,
    local_doc_path,
    normalize_llms_links,
    parse_markdown_links,
)
from skilld.sources.models import LlmsContent, LlmsLink

LONG_DOC = "# Page\n\n" + "Reference material for the library, long enough to keep. " * 4

LLMS_TXT = """# MyLib

> A library.

- [Intro](/guide/intro.md): getting started
- [API](https://mylib.dev/api/index.md)
- [Intro again](/guide/intro.md)
- [Site](https://mylib.dev/about)
"""


def test_parse_markdown_links_dedupes_and_keeps_order():
    links = parse_markdown_links(LLMS_TXT)
    assert links == [
        LlmsLink("Intro", "/guide/intro.md"),
        LlmsLink("API", "https://mylib.dev/api/index.md"),
    ]


def test_normalize_llms_links():
    normalized = normalize_llms_links(LLMS_TXT, "https://mylib.dev")
    assert "[Intro](./docs/guide/intro.md)" in normalized
    assert "[API](./docs/api/index.md)" in normalized
    assert "[Site](https://mylib.dev/about)" in normalized


def test_normalize_without_base_only_rewrites_root_relative():
    assert normalize_llms_links("[A](/a.md) [B](https://x.dev/b.md)") == "[A](./docs/a.md) [B](https://x.dev/b.md)"


@pytest.mark.parametrize(
    "url, safe",
    [
        ("https://mylib.dev/a.md", True),
        ("http://mylib.dev/a.md", False),
        ("https://localhost/a.md", False),
        ("https://127.0.0.1/a.md", False),
        ("https://169.254.169.254/latest", False),
        ("https://10.0.0.5/a.md", False),
        ("https://192.168.1.1/a.md", False),
        ("https://172.20.0.1/a.md", False),
        ("https://[::1]/a.md", False),
        ("file:///etc/passwd", False),
    ],
)
def test_is_safe_url(url, safe):
    assert is_safe_url(url) is safe


def test_local_doc_path():
    assert local_doc_path("/guide/intro.md") == "guide/intro.md"
    assert local_doc_path("https://mylib.dev/api/index.md") == "api/index.md"


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_llms_url_checks_content_type(self, make_http):
        http = make_http({"https://mylib.dev/llms.txt": LLMS_TXT})
        async with http:
            assert await fetch_llms_url(http, "https://mylib.dev/guide/") == "https://mylib.dev/llms.txt"

    @pytest.mark.asyncio
    async def test_fetch_llms_url_rejects_html(self, make_http):
        import httpx

        http = make_http({"https://mylib.dev/llms.txt": httpx.Response(200, html="<html></html>")})
        async with http:
            assert await fetch_llms_url(http, "https://mylib.dev") is None

    @pytest.mark.asyncio
    async def test_fetch_llms_txt_rejects_short_content(self, make_http):
        http = make_http({"https://mylib.dev/llms.txt": "tiny"})
        async with http:
            assert await fetch_llms_txt(http, "https://mylib.dev/llms.txt") is None

    @pytest.mark.asyncio
    async def test_fetch_llms_txt_parses_links(self, make_http):
        http = make_http({"https://mylib.dev/llms.txt": LLMS_TXT})
        async with http:
            llms = await fetch_llms_txt(http, "https://mylib.dev/llms.txt")
        assert llms.raw == LLMS_TXT
        assert len(llms.links) == 2


class TestDownload:
    @pytest.mark.asyncio
    async def test_downloads_and_filters(self, make_http):
        import httpx

        http = make_http({
            "https://mylib.dev/guide/intro.md": LONG_DOC,
            "https://mylib.dev/guide/short.md": "too short",
            "https://mylib.dev/guide/broken.md": httpx.ConnectError,
        })
        llms = LlmsContent(raw="", links=[
            LlmsLink("Intro", "/guide/intro.md"),
            LlmsLink("Short", "/guide/short.md"),
            LlmsLink("Broken", "/guide/broken.md"),
            LlmsLink("Missing", "/guide/missing.md"),
            LlmsLink("Private", "https://192.168.0.10/x.md"),
        ])
        progress = []
        async with http:
            docs = await download_llms_docs(http, llms, "https://mylib.dev", lambda url, i, n: progress.append(n))

        assert [d.url for d in docs] == ["/guide/intro.md"]
        assert docs[0].content == LONG_DOC
        assert "https://192.168.0.10/x.md" not in http.router.urls()
        assert progress and all(n == 5 for n in progress)
