"""Shared fixtures: a fresh SQLite store, a record factory and a fake registry."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest

from greenwood.domain.models import PackageRecord
from greenwood.services.importer.package_sync import PackageSynchronizer, SyncReport
from greenwood.services.importer.registry_client import RegistryClient
from greenwood.storage.sqlite_db_manager import SqliteDatabaseManager

REGISTRY = "https://registry.test"


@pytest.fixture
def store(tmp_path: Path) -> SqliteDatabaseManager:
    db = SqliteDatabaseManager(tmp_path / "packages.db")
    db.initialize()
    return db


def _record(
    author: str = "alice",
    name: str = "foo",
    version: str = "1.0.0",
    timestamp: int = 100,
    **fields: Any,
) -> PackageRecord:
    major, minor, patch = (int(p) for p in version.split("."))
    fields.setdefault("summary", f"{name} summary")
    fields.setdefault("license", "BSD-3-Clause")
    fields.setdefault("elm_version", "0.19.0 <= v < 0.20.0")
    return PackageRecord(
        author=author,
        name=name,
        major=major,
        minor=minor,
        patch=patch,
        timestamp=timestamp,
        **fields,
    )


@pytest.fixture
def make_record() -> Callable[..., PackageRecord]:
    return _record


def elm_json(summary: str = "A package", elm_version: str = "0.19.0 <= v < 0.20.0") -> Dict[str, Any]:
    return {
        "type": "package",
        "name": "ignored/by-importer",
        "summary": summary,
        "license": "BSD-3-Clause",
        "version": "1.0.0",
        "elm-version": elm_version,
        "dependencies": {"elm/core": "1.0.0 <= v < 2.0.0"},
        "test-dependencies": {},
    }


@pytest.fixture
def make_elm_json() -> Callable[..., Dict[str, Any]]:
    return elm_json


class FakeRegistry:
    """In-memory registry answering both protocols through httpx.MockTransport."""

    def __init__(self) -> None:
        # repo -> version -> (timestamp or None when missing from releases.json, elm.json)
        self.current: Dict[str, Dict[str, Tuple[Optional[int], Dict[str, Any]]]] = {}
        # "author/name@version" in publication order
        self.history: List[str] = []
        # repo -> version -> (elm-package.json, Last-Modified header)
        self.legacy: Dict[str, Dict[str, Tuple[Dict[str, Any], Optional[str]]]] = {}
        self.failing: Set[str] = set()
        self.timing_out: Set[str] = set()
        self.calls: List[str] = []

    def publish(
        self, repo: str, version: str, timestamp: Optional[int], metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        self.current.setdefault(repo, {})[version] = (timestamp, metadata or elm_json())
        self.history.append(f"{repo}@{version}")

    def publish_legacy(
        self,
        repo: str,
        version: str,
        metadata: Dict[str, Any],
        last_modified: Optional[str] = "Wed, 21 Oct 2015 07:28:00 GMT",
    ) -> None:
        self.legacy.setdefault(repo, {})[version] = (metadata, last_modified)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        legacy = "elm-package-version" in request.url.params
        self.calls.append(path)

        if path in self.timing_out:
            raise httpx.ReadTimeout("timed out", request=request)
        if path in self.failing:
            return httpx.Response(500, text="boom")

        if path == "/all-packages":
            if legacy:
                return httpx.Response(
                    200,
                    json=[
                        {"name": repo, "summary": "", "versions": list(versions)}
                        for repo, versions in self.legacy.items()
                    ],
                )
            return httpx.Response(
                200, json={repo: list(versions) for repo, versions in self.current.items()}
            )

        if path.startswith("/all-packages/since/"):
            position = int(path.rsplit("/", 1)[1])
            return httpx.Response(200, json=self.history[position:])

        parts = path.strip("/").split("/")
        if parts[0] == "packages" and len(parts) == 4 and parts[3] == "releases.json":
            repo = f"{parts[1]}/{parts[2]}"
            versions = self.current.get(repo)
            if versions is None:
                return httpx.Response(404)
            return httpx.Response(200, json={v: ts for v, (ts, _) in versions.items() if ts is not None})

        if parts[0] == "packages" and len(parts) == 5:
            repo, version, filename = f"{parts[1]}/{parts[2]}", parts[3], parts[4]
            if filename == "elm.json" and version in self.current.get(repo, {}):
                return httpx.Response(200, json=self.current[repo][version][1])
            if filename == "elm-package.json" and legacy and version in self.legacy.get(repo, {}):
                metadata, last_modified = self.legacy[repo][version]
                headers = {"Last-Modified": last_modified} if last_modified else {}
                return httpx.Response(200, content=json.dumps(metadata), headers=headers)

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def run_sync(store: SqliteDatabaseManager, registry: FakeRegistry) -> Callable[..., SyncReport]:
    """Run one PackageSynchronizer method against the fake registry."""

    def run(method: str = "update_packages", *args: Any) -> SyncReport:
        async def go() -> SyncReport:
            async with registry.client() as client:
                synchronizer = PackageSynchronizer(
                    store, RegistryClient(client, base_url=REGISTRY, legacy_base_url=REGISTRY)
                )
                return await getattr(synchronizer, method)(*args)

        return asyncio.run(go())

    return run
