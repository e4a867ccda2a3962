"""Shared fixtures: a routed httpx mock transport and a temp cache."""

from typing import Any, Callable, Dict, List

import httpx
import pytest

from skilld.cache.store import CacheStore
from skilld.sources.http import HttpClient


class Router:
    """Maps exact URLs to canned responses; everything else is a 404.

    Route values:
        str: 200 with a text body
        dict / list: 200 with a JSON body
        int: bare status code
        httpx.Response: returned as is
        Exception type: raised with the request (transport failure)
        callable: called with the request
    """

    def __init__(self, routes: Dict[str, Any]):
        self.routes = dict(routes)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        value = self.routes.get(str(request.url))
        if value is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(value, type) and issubclass(value, httpx.HTTPError):
            raise value("simulated failure", request=request)
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, int):
            return httpx.Response(value)
        if isinstance(value, str):
            return httpx.Response(200, text=value)
        if isinstance(value, (dict, list)):
            return httpx.Response(200, json=value)
        return value(request)

    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


@pytest.fixture
def make_http() -> Callable[..., HttpClient]:
    """Factory for an ``HttpClient`` backed by a ``Router``.

    Usage::

        http = make_http({"https://example.com/x": "body"})
        async with http:
            ...
        http.router.urls()
    """
    def factory(routes: Dict[str, Any], github_token: str = None) -> HttpClient:
        router = Router(routes)
        client = HttpClient(timeout=5.0, github_token=github_token, transport=httpx.MockTransport(router))
        client.router = router
        return client

    return factory


@pytest.fixture
def cache_root(tmp_path):
    root = tmp_path / "skilld-home"
    root.mkdir()
    return root


@pytest.fixture
def store(cache_root) -> CacheStore:
    store = CacheStore(cache_root)
    store.ensure_cache_dir()
    return store

