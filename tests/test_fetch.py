import httpx
import pytest

from skilld.cache.paths import get_package_db_path
from skilld.cache.store import CachedDoc, LinkStatus
from skilld.config.settings import FeaturesConfig
from skilld.pipeline.fetch import (
    DOCS_TYPE_DOCS,
    DOCS_TYPE_LLMS,
    DOCS_TYPE_README,
    classify_cached_doc,
    describe_failure,
    detect_docs_type,
    fetch_and_cache,
    force_clear,
    git_doc_cache_path,
    has_cached_docs,
    index_resources,
    link_all_references,
)
from skilld.sources.models import AttemptStatus, ResolveAttempt, ResolvedPackage, ResolveStep

REPO = "https://github.com/acme/mylib"
RAW = "https://raw.githubusercontent.com/acme/mylib/v1.2.0"
FILES_V120 = "https://ungh.cc/repos/acme/mylib/files/v1.2.0"
LLMS_URL = "https://mylib.dev/llms.txt"

LONG_DOC = "# Intro\n\n" + "How to get started with mylib in a real project. " * 4

LLMS_TXT = (
    "# MyLib\n\n"
    "- [Intro](/guide/intro.md): getting started\n"
    "- [API](https://mylib.dev/api/index.md): api reference\n"
)

NO_EXTRAS = FeaturesConfig(issues=False, discussions=False, releases=False, search=False)


def resolved(**overrides):
    data = dict(
        name="mylib",
        version="1.2.0",
        repo_url=REPO,
        docs_url="https://mylib.dev",
        llms_url=LLMS_URL,
        git_docs_url=RAW,
        git_ref="v1.2.0",
    )
    data.update(overrides)
    return ResolvedPackage(**data)


def git_routes(count):
    files = [f"docs/page{i}.md" for i in range(count)]
    routes = {FILES_V120: {"files": [{"path": f} for f in files]}}
    for f in files:
        routes[f"{RAW}/{f}"] = f"# {f}\n\ncontent"
    return routes


@pytest.fixture
def readme_uri(tmp_path):
    readme = tmp_path / "upstream" / "README.md"
    readme.parent.mkdir()
    readme.write_text("# mylib\n\nUsage notes.")
    return readme.as_uri()


def llms_routes():
    return {
        LLMS_URL: LLMS_TXT,
        "https://mylib.dev/guide/intro.md": LONG_DOC,
        "https://mylib.dev/api/index.md": LONG_DOC.replace("Intro", "API"),
    }


class TestHelpers:
    def test_git_doc_cache_path(self):
        assert git_doc_cache_path("docs/guide/a.md", None) == "docs/guide/a.md"
        assert git_doc_cache_path("packages/core/docs/a.md", "packages/core/") == "docs/a.md"
        assert git_doc_cache_path("website/guide/a.md", "website/guide/") == "docs/a.md"
        assert git_doc_cache_path("src/guide/a.md", None) == "docs/src/guide/a.md"

    def test_classify_cached_doc(self):
        assert classify_cached_doc("issues/issue-12.md") == {"type": "issue", "number": 12}
        assert classify_cached_doc("discussions/discussion-4.md") == {"type": "discussion", "number": 4}
        assert classify_cached_doc("releases/v1.0.0.md") == {"type": "release"}
        assert classify_cached_doc("issues/_INDEX.md") == {"type": "doc"}
        assert classify_cached_doc("docs/a.md") == {"type": "doc"}

    def test_describe_failure_prefers_npm_miss(self):
        attempts = [ResolveAttempt(ResolveStep.NPM, AttemptStatus.NOT_FOUND, message="Package not found on npm registry")]
        assert describe_failure(attempts) == "Package not found on npm registry"

    def test_describe_failure_joins_messages(self):
        attempts = [
            ResolveAttempt(ResolveStep.NPM, AttemptStatus.SUCCESS, message="Found x@1"),
            ResolveAttempt(ResolveStep.README, AttemptStatus.NOT_FOUND, message="No README found"),
            ResolveAttempt(ResolveStep.LOCAL, AttemptStatus.NOT_FOUND, message="No README in node_modules"),
        ]
        assert describe_failure(attempts) == "No README found; No README in node_modules"
        assert describe_failure([]) == "No docs found"

    def test_detect_docs_type(self, store):
        store.write("a", "1.0.0", [CachedDoc("docs/guide/x.md", "x")])
        store.write("b", "1.0.0", [CachedDoc("llms.txt", "x")])
        store.write("c", "1.0.0", [CachedDoc("docs/README.md", "x")])

        assert detect_docs_type(store, "a", "1.0.0", REPO) == (DOCS_TYPE_DOCS, f"{REPO}/tree/v1.0.0/docs")
        assert detect_docs_type(store, "b", "1.0.0", llms_url=LLMS_URL) == (DOCS_TYPE_LLMS, LLMS_URL)
        assert detect_docs_type(store, "c", "1.0.0") == (DOCS_TYPE_README, None)


class TestFetchDocs:
    @pytest.mark.asyncio
    async def test_git_docs_with_supplementary_llms(self, make_http, store):
        http = make_http({**git_routes(6), **llms_routes()})
        messages = []
        async with http:
            result = await fetch_and_cache(
                http, store, "mylib", resolved(), "1.2.0", use_cache=False,
                features=NO_EXTRAS, on_progress=messages.append, batch_size=4,
            )

        assert result.docs_type == DOCS_TYPE_DOCS
        assert result.doc_source == f"{REPO}/tree/v1.2.0/docs"
        assert len(result.docs_to_index) == 6

        cache_dir = store.cache_dir("mylib", "1.2.0")
        assert (cache_dir / "docs" / "page0.md").exists()
        assert "[Intro](./docs/guide/intro.md)" in (cache_dir / "llms.txt").read_text()
        assert (cache_dir / "llms-docs" / "guide" / "intro.md").exists()
        assert (cache_dir / "llms-docs" / "api" / "index.md").exists()
        assert "Downloading docs 4/6 from v1.2.0" in messages
        assert "Downloading docs 6/6 from v1.2.0" in messages

    @pytest.mark.asyncio
    async def test_shallow_git_docs_prefer_llms(self, make_http, store):
        http = make_http({**git_routes(2), **llms_routes()})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", False, features=NO_EXTRAS)

        assert result.docs_type == DOCS_TYPE_DOCS
        assert result.doc_source == LLMS_URL
        cache_dir = store.cache_dir("mylib", "1.2.0")
        assert not (cache_dir / "docs" / "page0.md").exists()
        assert (cache_dir / "docs" / "guide" / "intro.md").exists()
        assert (cache_dir / "llms.txt").exists()
        assert sorted(d.id for d in result.docs_to_index) == ["/guide/intro.md", "https://mylib.dev/api/index.md"]

    @pytest.mark.asyncio
    async def test_llms_without_linked_docs(self, make_http, store):
        http = make_http({LLMS_URL: "# MyLib\n\nNo links at all, just a long enough description here."})
        async with http:
            result = await fetch_and_cache(
                http, store, "mylib", resolved(git_docs_url=None), "1.2.0", False, features=NO_EXTRAS,
            )

        assert result.docs_type == DOCS_TYPE_LLMS
        assert result.docs_to_index == []
        assert store.is_cached("mylib", "1.2.0")

    @pytest.mark.asyncio
    async def test_readme_fallback(self, make_http, store, tmp_path):
        readme = tmp_path / "README.md"
        readme.write_text("# mylib\n\nUsage notes.")
        pkg = resolved(git_docs_url=None, llms_url=None, readme_url=readme.as_uri())

        http = make_http({})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", pkg, "1.2.0", False, features=NO_EXTRAS)

        assert result.docs_type == DOCS_TYPE_README
        assert result.doc_source == readme.as_uri()
        assert store.read("mylib", "1.2.0")[0].path == "docs/README.md"

    @pytest.mark.asyncio
    async def test_nothing_downloadable(self, make_http, store):
        issues_url = "https://api.github.com/repos/acme/mylib/issues?per_page=90&state=all"
        http = make_http({issues_url: [{"number": 1, "title": "Bug", "state": "open", "user": {"login": "alice"}}]})
        features = FeaturesConfig(issues=True, discussions=False, releases=True)
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", False, features=features)

        assert not result.docs_cached
        assert not store.is_cached("mylib", "1.2.0")
        assert not any("issues" in url or "releases" in url for url in http.router.urls())

    @pytest.mark.asyncio
    async def test_git_docs_network_failure_falls_back_to_llms(self, make_http, store):
        http = make_http({FILES_V120: httpx.ConnectError, **llms_routes()})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", False, features=NO_EXTRAS)

        assert result.docs_cached
        assert result.doc_source == LLMS_URL
        assert (store.cache_dir("mylib", "1.2.0") / "llms.txt").exists()

    @pytest.mark.asyncio
    async def test_supplementary_llms_timeout_keeps_git_docs(self, make_http, store):
        http = make_http({**git_routes(6), LLMS_URL: httpx.ReadTimeout})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", False, features=NO_EXTRAS)

        assert result.docs_type == DOCS_TYPE_DOCS
        assert result.doc_source == f"{REPO}/tree/v1.2.0/docs"
        cache_dir = store.cache_dir("mylib", "1.2.0")
        assert (cache_dir / "docs" / "page5.md").exists()
        assert not (cache_dir / "llms.txt").exists()

    @pytest.mark.asyncio
    async def test_llms_network_failure_falls_back_to_readme(self, make_http, store, readme_uri):
        http = make_http({LLMS_URL: httpx.ConnectError})
        pkg = resolved(git_docs_url=None, readme_url=readme_uri)
        async with http:
            result = await fetch_and_cache(http, store, "mylib", pkg, "1.2.0", False, features=NO_EXTRAS)

        assert result.docs_type == DOCS_TYPE_README
        assert result.doc_source == readme_uri
        assert [d.path for d in store.read("mylib", "1.2.0")] == ["docs/README.md"]

    @pytest.mark.asyncio
    async def test_readme_network_failure_caches_nothing(self, make_http, store):
        readme_url = "https://raw.githubusercontent.com/acme/mylib/main/README.md"
        http = make_http({readme_url: httpx.ReadTimeout})
        pkg = resolved(git_docs_url=None, llms_url=None, readme_url=readme_url)
        async with http:
            result = await fetch_and_cache(http, store, "mylib", pkg, "1.2.0", False, features=NO_EXTRAS)

        assert not result.docs_cached
        assert not store.is_cached("mylib", "1.2.0")

    def test_has_cached_docs(self, store):
        store.write("a", "1.0.0", [CachedDoc("issues/issue-1.md", "x")])
        store.write("b", "1.0.0", [CachedDoc("llms.txt", "x")])
        store.write("c", "1.0.0", [CachedDoc("docs/README.md", "x")])

        assert not has_cached_docs(store, "a", "1.0.0")
        assert has_cached_docs(store, "b", "1.0.0")
        assert has_cached_docs(store, "c", "1.0.0")
        assert not has_cached_docs(store, "d", "1.0.0")

    @pytest.mark.asyncio
    async def test_cached_entry_is_reused(self, make_http, store):
        store.write("mylib", "1.2.0", [
            CachedDoc("docs/guide/a.md", "# A"),
            CachedDoc("issues/issue-3.md", "# Issue"),
        ])
        http = make_http({})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", True, features=NO_EXTRAS)

        assert http.router.requests == []
        assert result.docs_type == DOCS_TYPE_DOCS
        assert result.doc_source == f"{REPO}/tree/v1.2.0/docs"
        kinds = {d.id: d.metadata["type"] for d in result.docs_to_index}
        assert kinds == {"docs/guide/a.md": "doc", "issues/issue-3.md": "issue"}

    @pytest.mark.asyncio
    async def test_cached_entry_with_index_collects_nothing(self, make_http, store):
        store.write("mylib", "1.2.0", [CachedDoc("docs/guide/a.md", "# A")])
        get_package_db_path(store.root, "mylib", "1.2.0").mkdir(parents=True)

        http = make_http({})
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", True, features=NO_EXTRAS)
        assert result.docs_to_index == []


class TestAuxiliaryResources:
    @pytest.mark.asyncio
    async def test_issues_cached_without_prs_and_bots(self, make_http, store, readme_uri):
        issues = [
            {"number": 1, "title": "Crash on start", "state": "open", "body": "boom", "user": {"login": "alice"},
             "created_at": "2024-03-01T10:00:00Z", "html_url": "https://github.com/acme/mylib/issues/1",
             "labels": [{"name": "bug"}], "comments": 2},
            {"number": 2, "title": "Add feature", "state": "open", "body": "", "user": {"login": "bob"},
             "pull_request": {"url": "x"}},
            {"number": 3, "title": "Update deps", "state": "closed", "body": "", "user": {"login": "renovate[bot]"}},
            {"number": 4, "title": "Docs typo", "state": "closed", "body": "fixed", "user": {"login": "carol"},
             "created_at": "2024-02-01T10:00:00Z"},
        ]
        http = make_http({"https://api.github.com/repos/acme/mylib/issues?per_page=90&state=all": issues})
        features = FeaturesConfig(issues=True, discussions=False, releases=False)
        async with http:
            result = await fetch_and_cache(
                http, store, "mylib", resolved(git_docs_url=None, llms_url=None, readme_url=readme_uri), "1.2.0", False,
                features=features,
            )

        assert result.has_issues
        issues_dir = store.cache_dir("mylib", "1.2.0") / "issues"
        assert sorted(p.name for p in issues_dir.iterdir()) == ["_INDEX.md", "issue-1.md", "issue-4.md"]
        index = (issues_dir / "_INDEX.md").read_text()
        assert index.index("## Open") < index.index("## Closed")
        assert "[bug]" in index
        assert [d.metadata["number"] for d in result.docs_to_index if d.metadata["type"] == "issue"] == [1, 4]

    @pytest.mark.asyncio
    async def test_existing_issues_dir_is_not_refetched(self, make_http, store):
        store.write("mylib", "1.2.0", [CachedDoc("issues/issue-1.md", "# old")])
        http = make_http({})
        features = FeaturesConfig(issues=True, discussions=False, releases=False)
        async with http:
            result = await fetch_and_cache(http, store, "mylib", resolved(), "1.2.0", True, features=features)

        assert result.has_issues
        assert not any("issues" in url for url in http.router.urls())

    @pytest.mark.asyncio
    async def test_discussions_need_a_token(self, make_http, store, readme_uri):
        http = make_http({})
        features = FeaturesConfig(issues=False, discussions=True, releases=False)
        pkg = resolved(git_docs_url=None, llms_url=None, readme_url=readme_uri)
        async with http:
            result = await fetch_and_cache(http, store, "mylib", pkg, "1.2.0", False, features=features)
        assert result.docs_cached
        assert not result.has_discussions
        assert not any("graphql" in url for url in http.router.urls())

    @pytest.mark.asyncio
    async def test_discussions_with_token(self, make_http, store, readme_uri):
        payload = {"data": {"repository": {"discussions": {"nodes": [
            {"number": 7, "title": "How to extend?", "body": "Question body", "createdAt": "2024-04-01T00:00:00Z",
             "url": "https://github.com/acme/mylib/discussions/7", "upvoteCount": 3,
             "category": {"name": "Q&A"}, "comments": {"totalCount": 1}, "author": {"login": "dave"}},
            {"number": 8, "title": "Bot post", "body": "", "createdAt": "", "url": "",
             "category": {"name": "General"}, "comments": {"totalCount": 0}, "author": {"login": "dependabot"}},
        ]}}}}
        http = make_http({"https://api.github.com/graphql": payload}, github_token="ghp_test")
        features = FeaturesConfig(issues=False, discussions=True, releases=False)
        async with http:
            result = await fetch_and_cache(
                http, store, "mylib", resolved(git_docs_url=None, llms_url=None, readme_url=readme_uri), "1.2.0", False,
                features=features,
            )

        assert result.has_discussions
        assert http.router.requests[-1].headers["Authorization"] == "Bearer ghp_test"
        index = (store.cache_dir("mylib", "1.2.0") / "discussions" / "_INDEX.md").read_text()
        assert "## Q&A" in index
        assert "3 upvotes" in index
        assert [d.metadata["number"] for d in result.docs_to_index if d.metadata["type"] == "discussion"] == [7]


class FakeIndexer:
    def __init__(self):
        self.calls = []

    async def create_index(self, docs, db_path, on_progress=None):
        self.calls.append((docs, db_path))
        return len(docs)


class TestIndexAndLink:
    @pytest.mark.asyncio
    async def test_index_resources(self, store):
        from skilld.index.indexer import IndexDoc

        indexer = FakeIndexer()
        docs = [IndexDoc("a", "alpha"), IndexDoc("b", "beta")]

        assert await index_resources(indexer, store, "mylib", "1.2.0", docs) == 2
        assert indexer.calls[0][1] == get_package_db_path(store.root, "mylib", "1.2.0")
        assert await index_resources(indexer, store, "mylib", "1.2.0", []) == 0

    @pytest.mark.asyncio
    async def test_index_skipped_when_db_exists(self, store):
        from skilld.index.indexer import IndexDoc

        get_package_db_path(store.root, "mylib", "1.2.0").mkdir(parents=True)
        indexer = FakeIndexer()
        assert await index_resources(indexer, store, "mylib", "1.2.0", [IndexDoc("a", "alpha")]) == 0
        assert indexer.calls == []

    def test_force_clear(self, store):
        store.write("mylib", "1.2.0", [CachedDoc("docs/a.md", "a")])
        db_path = get_package_db_path(store.root, "mylib", "1.2.0")
        db_path.mkdir(parents=True)

        force_clear(store, "mylib", "1.2.0")

        assert not store.is_cached("mylib", "1.2.0")
        assert not db_path.exists()

    def test_link_all_references(self, store, tmp_path):
        store.write("mylib", "1.2.0", [
            CachedDoc("docs/a.md", "a"),
            CachedDoc("releases/v1.2.0.md", "r"),
        ])
        skill_dir = tmp_path / "skills" / "mylib"

        results = link_all_references(store, skill_dir, "mylib", tmp_path, "1.2.0", DOCS_TYPE_DOCS)
        linked = {r.link_path.name for r in results if r.status == LinkStatus.LINKED}
        assert linked == {"docs", "releases"}
        assert (skill_dir / ".skilld" / "docs" / "a.md").exists()

    def test_readme_entries_do_not_link_docs(self, store, tmp_path):
        store.write("mylib", "1.2.0", [CachedDoc("docs/README.md", "r")])
        results = link_all_references(store, tmp_path / "skill", "mylib", tmp_path, "1.2.0", DOCS_TYPE_README)
        assert "docs" not in {r.link_path.name for r in results}
