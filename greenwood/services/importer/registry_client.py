"""
HTTP client for the package registry (current and legacy protocols).
"""
from __future__ import annotations

import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from greenwood.domain.errors import FetchError, ParseError

logger = logging.getLogger(__name__)


REGISTRY_URL = "https://package.elm-lang.org"
LEGACY_REGISTRY_URL = "http://package.elm-lang.org"


class LegacyPackage(BaseModel):
    """One entry of the legacy all-packages index."""

    name: str
    summary: str = ""
    versions: List[str]


_ALL_PACKAGES = TypeAdapter(Dict[str, List[str]])
_PACKAGES_SINCE = TypeAdapter(List[str])
_RELEASES = TypeAdapter(Dict[str, int])
_METADATA = TypeAdapter(Dict[str, Any])
_LEGACY_PACKAGES = TypeAdapter(List[LegacyPackage])


def parse_last_modified(value: Optional[str]) -> Optional[int]:
    """Convert an RFC 2822 Last-Modified header into epoch seconds."""
    if not value:
        return None
    try:
        moment: datetime = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Last-Modified header: {value!r}")
        return None
    return int(moment.timestamp())


class RegistryClient:
    """
    Thin wrapper around an httpx.AsyncClient speaking the registry endpoints.

    Every method raises FetchError when the request fails (transport error,
    timeout, non-2xx status) and ParseError when the body does not have the
    expected shape.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = REGISTRY_URL,
        legacy_base_url: str = LEGACY_REGISTRY_URL,
        legacy_package_version: str = "0.18",
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.legacy_base_url = legacy_base_url.rstrip("/")
        self.legacy_params = {"elm-package-version": legacy_package_version}

    async def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        logger.debug(f"GET {url}")
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"GET {url} failed: {e}") from e
        return response

    @staticmethod
    def _decode(response: httpx.Response, adapter: TypeAdapter) -> Any:
        try:
            return adapter.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise ParseError(f"Unexpected response from {response.request.url}: {e}") from e

    async def all_packages(self) -> Dict[str, List[str]]:
        """Every package of the registry with all its versions."""
        response = await self._get(f"{self.base_url}/all-packages")
        return self._decode(response, _ALL_PACKAGES)

    async def packages_since(self, position: int) -> List[str]:
        """Releases published after the first `position` ones, as "author/name@version"."""
        response = await self._get(f"{self.base_url}/all-packages/since/{position}")
        return self._decode(response, _PACKAGES_SINCE)

    async def releases(self, repo: str) -> Dict[str, int]:
        """Publish time of every version of a package."""
        response = await self._get(f"{self.base_url}/packages/{repo}/releases.json")
        return self._decode(response, _RELEASES)

    async def elm_json(self, repo: str, version: str) -> Dict[str, Any]:
        """elm.json of one release."""
        response = await self._get(f"{self.base_url}/packages/{repo}/{version}/elm.json")
        return self._decode(response, _METADATA)

    async def legacy_packages(self) -> List[LegacyPackage]:
        """All packages known to the legacy registry."""
        # The legacy server is selected by the protocol version parameter.
        response = await self._get(f"{self.legacy_base_url}/all-packages", params=self.legacy_params)
        return self._decode(response, _LEGACY_PACKAGES)

    async def legacy_elm_package(
        self, repo: str, version: str
    ) -> Tuple[Dict[str, Any], Optional[int]]:
        """
        elm-package.json of one legacy release.

        Returns:
            (metadata, publish time from Last-Modified or None)
        """
        response = await self._get(
            f"{self.legacy_base_url}/packages/{repo}/{version}/elm-package.json",
            params=self.legacy_params,
        )
        timestamp = parse_last_modified(response.headers.get("last-modified"))
        return self._decode(response, _METADATA), timestamp
