"""
Turn an author/name filter map into a bounded PackageQuery.
"""
from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from greenwood.domain.errors import InvalidFilterError
from greenwood.domain.models import PackageQuery, PackageRecord, ReleaseKind
from greenwood.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

# Filter key carrying the free-text search pattern.
SEARCH_KEY = "_search"
WILDCARD = "*"


class QueryBuilder:
    """
    Build queries from filters shaped like {"author": "name other *"}.

    Structured filter and search pattern are combined with OR; the release
    kind always narrows the result further.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def build(
        self,
        filter: Mapping[str, str],
        release: ReleaseKind = ReleaseKind.ANY,
        limit: int = 42,
    ) -> PackageQuery:
        if limit < 1:
            raise InvalidFilterError(f"Invalid limit {limit}")

        packages = dict(filter)
        pattern = (packages.pop(SEARCH_KEY, None) or "").strip() or None

        repos = None
        if packages:
            repos = tuple(
                repo
                for author, names in packages.items()
                for repo in self._expand(author, names)
            )

        return PackageQuery(repos=repos, pattern=pattern, release=release, limit=limit)

    def run(
        self,
        filter: Mapping[str, str],
        release: ReleaseKind = ReleaseKind.ANY,
        limit: int = 42,
    ) -> List[PackageRecord]:
        return self.db.query(self.build(filter, release, limit))

    def _expand(self, author: str, names: Optional[str]) -> List[str]:
        if not author or "/" in author:
            raise InvalidFilterError(f"Invalid author {author!r}")

        tokens = (names or "").split()
        if WILDCARD in tokens:
            tokens = self.db.distinct_package_names(author)
            logger.debug(f"Expanded {author}/* to {len(tokens)} packages")
        return [f"{author}/{name}" for name in tokens]
