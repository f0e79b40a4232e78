"""
Synchronize the local record store with the package registry.

Three modes are available:

* full: the store holds no current-format record yet, every release of
  every package is imported;
* incremental: only the releases published after the ones already counted
  are imported;
* legacy backfill: releases only listed by the legacy registry are
  recovered, skipping packages whose versions are all covered already.

Every insert is preceded by an existence check, so running any mode again
without new upstream data stores nothing.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from greenwood.domain.errors import (
    DuplicateKeyError,
    FetchError,
    NormalizationRejected,
    ParseError,
)
from greenwood.domain.models import FORMAT_CURRENT, FORMAT_LEGACY, NaturalKey
from greenwood.services.importer.adapters import (
    adapter_for,
    parse_release_token,
    parse_repo,
    parse_version,
)
from greenwood.services.importer.registry_client import RegistryClient
from greenwood.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome counters of one synchronization run."""

    mode: str
    inserted: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    aborted: bool = False

    def __str__(self) -> str:
        return (
            f"{self.mode} sync: {self.inserted} added, {self.duplicates} duplicates, "
            f"{self.rejected} rejected, {self.failed} failed"
            + (" (aborted)" if self.aborted else "")
        )


class PackageSynchronizer:
    """Drives the format adapters against the registry and feeds the store."""

    def __init__(self, db: DatabaseManager, registry: RegistryClient):
        self.db = db
        self.registry = registry

    async def update_packages(self) -> SyncReport:
        """Run a full sync on an empty store, an incremental one otherwise."""
        count = self.db.count(FORMAT_CURRENT)
        if count == 0:
            logger.info("Retrieving all packages")
            return await self.sync_all()
        logger.info(f"Updating packages since {count}")
        return await self.sync_since(count)

    async def sync_all(self) -> SyncReport:
        report = SyncReport(mode="full")
        try:
            packages = await self.registry.all_packages()
        except (FetchError, ParseError) as e:
            logger.error(f"Can't get all packages: {e}")
            report.aborted = True
            return self._finish(report)

        logger.info(f"{len(packages)} packages found")

        for repo, versions in packages.items():
            try:
                releases = await self.registry.releases(repo)
            except (FetchError, ParseError) as e:
                logger.error(f"Can't get {repo} releases: {e}")
                report.failed += len(versions)
                continue

            for version in versions:
                await self._import_current(report, repo, version, releases.get(version))

        return self._finish(report)

    async def sync_since(self, position: int) -> SyncReport:
        report = SyncReport(mode="incremental")
        try:
            tokens = await self.registry.packages_since(position)
        except (FetchError, ParseError) as e:
            logger.error(f"Can't get packages since {position}: {e}")
            report.aborted = True
            return self._finish(report)

        logger.info(f"{len(tokens)} new packages")

        for token in tokens:
            try:
                repo, version, key = parse_release_token(token)
            except NormalizationRejected as e:
                logger.error(f"Rejected {token}: {e}")
                report.rejected += 1
                continue

            if self.db.exists(key):
                logger.debug(f"{token} is already stored")
                continue

            try:
                releases = await self.registry.releases(repo)
            except (FetchError, ParseError) as e:
                logger.error(f"Can't get {repo} releases: {e}")
                report.failed += 1
                continue

            await self._import_current(report, repo, version, releases.get(version))

        return self._finish(report)

    async def sync_legacy(self) -> SyncReport:
        report = SyncReport(mode="legacy")
        try:
            packages = await self.registry.legacy_packages()
        except (FetchError, ParseError) as e:
            logger.error(f"Can't get old format packages: {e}")
            report.aborted = True
            return self._finish(report)

        logger.info(f"{len(packages)} old format packages found")

        for package in packages:
            # Cheap whole-package check first, exact versions only when it fails.
            if self.db.exists_legacy_versions(package.name, package.versions):
                continue

            for version in package.versions:
                if self.db.exists_legacy_version(package.name, version):
                    continue
                if self._stored_elsewhere(package.name, version):
                    continue
                await self._import_legacy(report, package.name, version)

        return self._finish(report)

    def _stored_elsewhere(self, repo: str, version: str) -> bool:
        try:
            author, name = parse_repo(repo)
            key = NaturalKey(author, name, *parse_version(version))
        except NormalizationRejected:
            # Let the adapter reject and log it.
            return False

        stored = self.db.stored_format(key)
        if stored is None:
            return False
        logger.warning(
            f"Format anomaly for {repo} {version}: listed by the legacy registry "
            f"but stored as format {stored}"
        )
        return True

    async def _import_current(
        self, report: SyncReport, repo: str, version: str, timestamp: Optional[int]
    ) -> None:
        if timestamp is None:
            logger.error(f"Rejected {repo} {version}: missing from releases.json")
            report.rejected += 1
            return
        try:
            metadata: Optional[Dict[str, Any]] = await self.registry.elm_json(repo, version)
        except (FetchError, ParseError) as e:
            logger.error(f"Can't get {repo} {version} elm.json: {e}")
            report.failed += 1
            return
        self._save(report, FORMAT_CURRENT, repo, version, metadata, timestamp)

    async def _import_legacy(self, report: SyncReport, repo: str, version: str) -> None:
        try:
            metadata, timestamp = await self.registry.legacy_elm_package(repo, version)
        except (FetchError, ParseError) as e:
            logger.error(f"Can't get {repo} {version} elm-package.json: {e}")
            report.failed += 1
            return
        self._save(report, FORMAT_LEGACY, repo, version, metadata, timestamp)

    def _save(
        self,
        report: SyncReport,
        format: int,
        repo: str,
        version: str,
        metadata: Optional[Dict[str, Any]],
        timestamp: Optional[int],
    ) -> None:
        try:
            record = adapter_for(format).normalize(repo, version, metadata, timestamp)
        except NormalizationRejected as e:
            logger.error(f"Rejected {repo} {version}: {e}")
            report.rejected += 1
            return

        try:
            self.db.insert(record)
        except DuplicateKeyError as e:
            logger.info(f"Ignored duplicate package {e}")
            report.duplicates += 1
            return
        report.inserted += 1

    @staticmethod
    def _finish(report: SyncReport) -> SyncReport:
        if report.aborted:
            logger.error(str(report))
        else:
            logger.info(str(report))
        return report


async def run_once(legacy: bool = False) -> SyncReport:
    """Run one synchronization with the on-disk configuration and store."""
    import httpx

    from greenwood.core.dependencies import get_config, get_db_manager

    config = get_config()
    async with httpx.AsyncClient(
        timeout=config.request_timeout_seconds, follow_redirects=True
    ) as client:
        registry = RegistryClient(
            client,
            base_url=config.registry_url,
            legacy_base_url=config.legacy_registry_url,
            legacy_package_version=config.legacy_package_version,
        )
        synchronizer = PackageSynchronizer(get_db_manager(), registry)
        if legacy:
            return await synchronizer.sync_legacy()
        return await synchronizer.update_packages()


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        report = asyncio.run(run_once(legacy="--legacy" in sys.argv[1:]))
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)

    print(report)
    sys.exit(1 if report.aborted else 0)
