from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import requests

from brewdash.cache import DiskCache
from brewdash.dashboard import Dashboard
from brewdash.dispatch import ControlQueue
from brewdash.errors import CommandError
from brewdash.query import QueryResult
from brewdash.sources.base import BrewClient


class FakeRunner:
    """Command runner answering from canned outputs keyed by argv tuple."""

    def __init__(self, responses: dict | None = None):
        self.responses: dict[tuple, Any] = dict(responses or {})
        self.calls: list[tuple] = []

    def __setitem__(self, args: tuple, response: Any) -> None:
        self.responses[tuple(args)] = response

    def __call__(self, args) -> bytes:
        args = tuple(args)
        self.calls.append(args)
        response = self.responses.get(args)
        if response is None:
            raise CommandError(args, 1, "no canned response")
        if isinstance(response, Exception):
            raise response
        return response


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Stand-in for requests.Session; unknown URLs fail with a connection error."""

    def __init__(self, responses: dict | None = None):
        self.responses: dict[str, Any] = dict(responses or {})
        self.calls: list[str] = []

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise requests.ConnectionError(f"unreachable: {url}")
        if isinstance(response, FakeResponse):
            return response
        return FakeResponse(response)


class RecordingRenderer:
    def __init__(self):
        self.results: list[QueryResult] = []
        self.statuses: list[tuple] = []
        self.details: list = []
        self.lines: list[str] = []

    def show_packages(self, result: QueryResult, scroll_to_top: bool) -> None:
        self.results.append(result)

    def show_status(self, level, message: str) -> None:
        self.statuses.append((level, message))

    def show_detail(self, package) -> None:
        self.details.append(package)

    def append_log(self, line: str) -> None:
        self.lines.append(line)


def formula(name: str, **fields: Any) -> dict:
    data = {"name": name, "full_name": name, "desc": f"{name} tool", "versions": {"stable": "1.0"}}
    data.update(fields)
    return data


def cask(token: str, **fields: Any) -> dict:
    data = {"token": token, "name": [token.capitalize()], "desc": f"{token} app", "version": "1.0"}
    data.update(fields)
    return data


def as_json(value: Any) -> bytes:
    return json.dumps(value).encode()


@pytest.fixture
def cache(tmp_path: Path) -> DiskCache:
    return DiskCache(tmp_path / "cache")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def brew(runner: FakeRunner) -> BrewClient:
    runner[("brew", "--prefix")] = b"/opt/homebrew\n"
    return BrewClient("brew", runner)


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def control() -> ControlQueue:
    queue = ControlQueue()
    return queue


@pytest.fixture
def dashboard(renderer: RecordingRenderer, control: ControlQueue) -> Dashboard:
    return Dashboard(renderer, control)
