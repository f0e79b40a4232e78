from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from greenwood.domain.models import NaturalKey, PackageQuery, PackageRecord


class DatabaseManager(ABC):
    """
    Abstract base class for the append-only package record store.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the storage subsystem (create tables, indexes)."""
        pass

    @abstractmethod
    def count(self, format: Optional[int] = None) -> int:
        """Count stored records, optionally only those of one format."""
        pass

    @abstractmethod
    def exists(self, key: NaturalKey) -> bool:
        """Check whether a release is already stored, whatever its format."""
        pass

    @abstractmethod
    def stored_format(self, key: NaturalKey) -> Optional[int]:
        """Get the format a release was stored under, or None if absent."""
        pass

    @abstractmethod
    def exists_legacy_versions(self, repo: str, versions: Sequence[str]) -> bool:
        """
        Check that every version of `repo` in `versions` is stored under
        legacy conditions.
        """
        pass

    @abstractmethod
    def exists_legacy_version(self, repo: str, version: str) -> bool:
        """Check that one version of `repo` is stored under legacy conditions."""
        pass

    @abstractmethod
    def insert(self, record: PackageRecord) -> None:
        """
        Persist a new record.
        Raises DuplicateKeyError if its natural key is already stored.
        """
        pass

    @abstractmethod
    def query(self, query: PackageQuery) -> List[PackageRecord]:
        """Run a bounded query, newest records first."""
        pass

    @abstractmethod
    def distinct_package_names(self, author: str) -> List[str]:
        """List every package name published by `author`, most recently active first."""
        pass
