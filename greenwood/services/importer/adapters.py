"""
Normalize registry metadata of every historical format into PackageRecord.

Each adapter handles one metadata shape:

* 19: elm.json of the current registry, publish time from releases.json
* 15: legacy elm-package.json, publish time from the Last-Modified header
* 14: legacy elm-package.json predating the "elm-version" field

Adapters raise NormalizationRejected for anything they cannot turn into a
complete record; the caller logs it and moves on to the next release.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from greenwood.domain.errors import NormalizationRejected
from greenwood.domain.models import (
    FORMAT_CURRENT,
    FORMAT_LEGACY,
    FORMAT_PRE_VERSION_FIELD,
    LEGACY_ELM_VERSION,
    NaturalKey,
    PackageRecord,
)

logger = logging.getLogger(__name__)


class ElmJson(BaseModel):
    """Package metadata of the current registry (elm.json)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str
    license: str
    elm_version: str = Field(alias="elm-version")
    dependencies: Dict[str, str]


class LegacyElmPackageJson(BaseModel):
    """Package metadata of the legacy registry (elm-package.json)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = ""
    license: str = ""
    elm_version: str = Field(default="", alias="elm-version")
    dependencies: Dict[str, str] = Field(default_factory=dict)


def parse_repo(repo: str) -> Tuple[str, str]:
    """Split "author/name" on the first slash."""
    author, sep, name = repo.partition("/")
    if not sep or not author or not name:
        raise NormalizationRejected(f"Invalid package name {repo!r}")
    return author, name


def parse_version(version: str) -> Tuple[int, int, int]:
    """Parse "major.minor.patch" into exactly three non-negative integers."""
    parts = version.split(".")
    if len(parts) != 3 or not all(p.isascii() and p.isdigit() for p in parts):
        raise NormalizationRejected(f"Invalid version {version!r}")
    major, minor, patch = (int(p) for p in parts)
    return major, minor, patch


def parse_release_token(token: str) -> Tuple[str, str, NaturalKey]:
    """
    Parse an incremental index entry "author/name@1.2.3".

    Returns:
        (repo, version, natural key)
    """
    repo, sep, version = token.partition("@")
    if not sep or "@" in version:
        raise NormalizationRejected(f"Invalid release {token!r}")
    author, name = parse_repo(repo)
    return repo, version, NaturalKey(author, name, *parse_version(version))


class FormatAdapter(ABC):
    """Turns one release's raw metadata into a PackageRecord."""

    format: int

    def normalize(
        self,
        repo: str,
        version: str,
        metadata: Optional[Dict[str, Any]],
        timestamp: Optional[int],
    ) -> PackageRecord:
        """
        Build the record of `repo` at `version`.

        Args:
            repo: "author/name"
            version: "major.minor.patch"
            metadata: Decoded metadata document, None if it could not be fetched
            timestamp: Publish time in epoch seconds, None if unknown

        Raises:
            NormalizationRejected: when any part of the identity, the metadata
                or the publish time is missing or invalid
        """
        author, name = parse_repo(repo)
        major, minor, patch = parse_version(version)
        if metadata is None:
            raise NormalizationRejected(f"No metadata for {repo} {version}")
        if timestamp is None:
            raise NormalizationRejected(f"No publish time for {repo} {version}")

        try:
            fields = self._fields(metadata)
            return PackageRecord(
                author=author,
                name=name,
                major=major,
                minor=minor,
                patch=patch,
                timestamp=int(timestamp),
                **fields,
            )
        except ValidationError as e:
            raise NormalizationRejected(
                f"Invalid format {self.format} metadata for {repo} {version}: {e}"
            ) from e

    @abstractmethod
    def _fields(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Extract summary, license, elm_version, dependencies and format."""


class CurrentFormatAdapter(FormatAdapter):
    format = FORMAT_CURRENT

    def _fields(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        elm = ElmJson.model_validate(metadata)
        return {
            "summary": elm.summary,
            "license": elm.license,
            "elm_version": elm.elm_version,
            "dependencies": elm.dependencies,
            "format": self.format,
        }


class PreVersionFieldAdapter(FormatAdapter):
    format = FORMAT_PRE_VERSION_FIELD

    def _fields(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        elm = LegacyElmPackageJson.model_validate(metadata)
        return {
            "summary": elm.summary,
            "license": elm.license,
            "elm_version": elm.elm_version or LEGACY_ELM_VERSION,
            "dependencies": elm.dependencies,
            "format": self.format,
        }


class LegacyFormatAdapter(FormatAdapter):
    format = FORMAT_LEGACY

    def _fields(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        elm = LegacyElmPackageJson.model_validate(metadata)
        if not elm.elm_version:
            # Documents without the field predate it.
            return PreVersionFieldAdapter()._fields(metadata)
        return {
            "summary": elm.summary,
            "license": elm.license,
            "elm_version": elm.elm_version,
            "dependencies": elm.dependencies,
            "format": self.format,
        }


ADAPTERS: Dict[int, FormatAdapter] = {
    adapter.format: adapter
    for adapter in (CurrentFormatAdapter(), LegacyFormatAdapter(), PreVersionFieldAdapter())
}


def adapter_for(format: int) -> FormatAdapter:
    """Get the adapter of a metadata format; unknown and retired formats are rejected."""
    try:
        return ADAPTERS[format]
    except KeyError:
        raise NormalizationRejected(f"Unsupported metadata format {format}") from None
