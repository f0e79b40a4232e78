"""
Pydantic models for the greenwood package tracker.

This module defines all data models used throughout the application, including:
- Service configuration
- The persisted package release record and its natural key
- Release kinds and the query structure handed to the store

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Metadata formats
# ---------------------------------------------------------------------------

# Oldest registry shape, never imported.
FORMAT_UNSUPPORTED = 13
# Legacy elm-package.json without an "elm-version" field.
FORMAT_PRE_VERSION_FIELD = 14
# Legacy elm-package.json with an "elm-version" field.
FORMAT_LEGACY = 15
# Current elm.json + releases.json.
FORMAT_CURRENT = 19

LEGACY_ELM_VERSION = "0.14.0 <= v < 0.15.0"
LEGACY_ELM_VERSION_PREFIXES = ("0.14", "0.15", "0.16", "0.17", "0.18")


# ---------------------------------------------------------------------------
# Service Configuration
# ---------------------------------------------------------------------------


class ServiceConfig(BaseModel):
    """
    Top-level configuration for the greenwood service.

    Persisted at: <DATA_DIR>/greenwood.json
    """

    registry_url: str = Field(
        default="https://package.elm-lang.org",
        description="Base URL of the current package registry.",
    )
    legacy_registry_url: str = Field(
        default="http://package.elm-lang.org",
        description="Base URL answering the legacy protocol (selected with elm-package-version).",
    )
    legacy_package_version: str = Field(
        default="0.18",
        description="Protocol version sent to the legacy registry.",
    )
    sync_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="Seconds between two synchronization cycles.",
    )
    legacy_sync_every: int = Field(
        default=60,
        ge=1,
        description="Run the legacy backfill once every N synchronization cycles.",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to every registry request.",
    )
    query_limit: int = Field(
        default=42,
        ge=1,
        description="Maximum number of records returned by a feed query.",
    )
    site_url: str = Field(
        default="https://elm-greenwood.com",
        description="Public URL of this service, used in feeds and generated links.",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level.",
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Timestamp when this configuration was first created.",
    )


# ---------------------------------------------------------------------------
# Package Records
# ---------------------------------------------------------------------------


class NaturalKey(NamedTuple):
    """Identity of a package release."""

    author: str
    name: str
    major: int
    minor: int
    patch: int

    @property
    def repo(self) -> str:
        return f"{self.author}/{self.name}"

    @property
    def version(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def __str__(self) -> str:
        return f"{self.repo}@{self.version}"


class PackageRecord(BaseModel):
    """
    One published version of a package, normalized from any registry format.

    Records are append-only: once stored they are never updated or deleted.
    """

    model_config = ConfigDict(frozen=True)

    author: str
    name: str
    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    patch: int = Field(ge=0)
    timestamp: int = Field(description="Publication time in seconds since the epoch.")
    summary: str = ""
    license: str = ""
    elm_version: str = Field(default="", description="Compiler compatibility constraint.")
    dependencies: Dict[str, str] = Field(default_factory=dict)
    format: int = FORMAT_CURRENT

    @field_validator("author", "name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        if "/" in value:
            raise ValueError("must not contain '/'")
        return value

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(self.author, self.name, self.major, self.minor, self.patch)

    @property
    def repo(self) -> str:
        return f"{self.author}/{self.name}"

    @property
    def version(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def is_first_release(self) -> bool:
        return (self.major, self.minor, self.patch) == (1, 0, 0)

    @property
    def release_kind(self) -> "ReleaseKind":
        return ReleaseKind.classify(self.major, self.minor, self.patch)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class ReleaseKind(str, Enum):
    """
    Classification of releases used to narrow a query.

    FIRST, MAJOR, MINOR and PATCH are predicates over the version numbers
    (FIRST is a subset of MAJOR). LAST keeps the newest record of every
    (author, name, elm_version) group. ANY does not restrict anything.
    """

    ANY = "any"
    LAST = "last"
    FIRST = "first"
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"

    def matches(self, major: int, minor: int, patch: int) -> bool:
        """
        Evaluate the version predicate of this kind. LAST depends on the other
        stored records and is always true here.
        """
        if self is ReleaseKind.FIRST:
            return (major, minor, patch) == (1, 0, 0)
        if self is ReleaseKind.MAJOR:
            return minor == 0 and patch == 0
        if self is ReleaseKind.MINOR:
            return minor != 0 and patch == 0
        if self is ReleaseKind.PATCH:
            return patch != 0
        return True

    @classmethod
    def classify(cls, major: int, minor: int, patch: int) -> "ReleaseKind":
        """Return the most specific version kind: FIRST, MAJOR, MINOR or PATCH."""
        for kind in (cls.FIRST, cls.MAJOR, cls.MINOR, cls.PATCH):
            if kind.matches(major, minor, patch):
                return kind
        raise ValueError(f"Unclassifiable version {major}.{minor}.{patch}")


class PackageQuery(BaseModel):
    """
    Bounded retrieval request handed to the store.

    repos is None when no structured filter was given; an empty tuple means
    the filter expanded to nothing and matches no package.
    """

    model_config = ConfigDict(frozen=True)

    repos: Optional[Tuple[str, ...]] = None
    pattern: Optional[str] = None
    release: ReleaseKind = ReleaseKind.ANY
    limit: int = Field(default=42, ge=1)
