"""
Shared fixtures: an in-memory stand-in for the GitHub REST API.
"""

import json
import threading
import time
from urllib.parse import parse_qs, unquote, urlparse

import pytest
import requests

from delete_branches import GitHubClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.content = text.encode()

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Serves a branch list and records every request made against it.

    ``page_errors`` maps a page number to the response (or exception)
    returned for it.
    ``delete_results`` maps a branch name to a response, an exception, or a
    list of those consumed one per attempt. Unlisted deletes return 204.
    """

    def __init__(
        self, branches=(), page_errors=None, delete_results=None, delay=0.0
    ):
        self.headers = {}
        self.adapters = {}
        self.branches = [{"name": name, "protected": False} for name in branches]
        self.page_errors = page_errors or {}
        self.delete_results = delete_results or {}
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def mount(self, prefix, adapter):
        self.adapters[prefix] = adapter

    @property
    def gets(self):
        return [url for method, url in self.calls if method == "GET"]

    @property
    def deletes(self):
        return [url for method, url in self.calls if method == "DELETE"]

    def request(self, method, url, timeout=None):
        with self._lock:
            self.calls.append((method, url))

        if method == "GET":
            return self._list(url)
        if method == "DELETE":
            return self._delete(url)
        return FakeResponse(405, {"message": "Method Not Allowed"})

    def _list(self, url):
        query = parse_qs(urlparse(url).query)
        page = int(query["page"][0])
        per_page = int(query["per_page"][0])
        if page in self.page_errors:
            result = self.page_errors[page]
            if isinstance(result, Exception):
                raise result
            return result
        start = (page - 1) * per_page
        return FakeResponse(200, self.branches[start:start + per_page])

    def _delete(self, url):
        if self.delay:
            time.sleep(self.delay)
        name = unquote(url.split("/git/refs/heads/", 1)[1])
        with self._lock:
            result = self.delete_results.get(name)
            if isinstance(result, list):
                result = result.pop(0) if result else None
        if isinstance(result, BaseException):
            raise result
        return result if result is not None else FakeResponse(204)


@pytest.fixture
def make_client():
    """Build a GitHubClient bound to a FakeSession."""

    def _make(**kwargs):
        session = FakeSession(**kwargs)
        return GitHubClient("test-token", session=session), session

    return _make


@pytest.fixture
def not_found():
    return FakeResponse(
        404,
        {
            "message": "Reference does not exist",
            "documentation_url": "https://docs.github.com/rest",
        },
    )


@pytest.fixture
def connection_error():
    return requests.ConnectionError("Connection refused")
