from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from greenwood.core.dependencies import get_app_config, get_query_builder
from greenwood.domain.errors import InvalidFilterError, StoreUnavailableError
from greenwood.domain.models import PackageRecord, ReleaseKind, ServiceConfig
from greenwood.services.feed import render_feed
from greenwood.services.query import QueryBuilder

logger = logging.getLogger(__name__)
router = APIRouter()

# Kinds reachable through a path segment; ANY is served at the root.
_PATH_KINDS = {kind.value: kind for kind in ReleaseKind if kind is not ReleaseKind.ANY}


def _release_from_path(release: str) -> ReleaseKind:
    kind = _PATH_KINDS.get(release)
    if kind is None:
        raise HTTPException(status_code=404, detail=f"Unknown release kind {release!r}")
    return kind


def _run_query(
    request: Request,
    builder: QueryBuilder,
    release: ReleaseKind,
    limit: int,
) -> tuple[Dict[str, str], List[PackageRecord]]:
    filter = dict(request.query_params)
    try:
        records = builder.run(filter, release, limit)
    except InvalidFilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailableError as e:
        logger.error(f"Query failed: {e}")
        raise HTTPException(status_code=503, detail="Package store unavailable")
    return filter, records


def _feed_response(
    request: Request,
    builder: QueryBuilder,
    config: ServiceConfig,
    release: ReleaseKind,
) -> Response:
    filter, records = _run_query(request, builder, release, config.query_limit)
    body = render_feed(
        records,
        filter,
        release,
        site_url=config.site_url,
        registry_url=config.registry_url,
    )
    return Response(content=body, media_type="application/xml")


def _record_payload(record: PackageRecord) -> dict:
    data = record.model_dump()
    data["version"] = record.version
    data["first_release"] = record.is_first_release
    return data


# ---------------------------------------------------------------------------
# 1. RSS feeds
# ---------------------------------------------------------------------------


@router.get("/.rss")
def all_releases_feed(
    request: Request,
    builder: QueryBuilder = Depends(get_query_builder),
    config: ServiceConfig = Depends(get_app_config),
) -> Response:
    """
    Feed of every release matching the query parameters.
    """
    return _feed_response(request, builder, config, ReleaseKind.ANY)


@router.get("/{release}/.rss")
def release_feed(
    release: str,
    request: Request,
    builder: QueryBuilder = Depends(get_query_builder),
    config: ServiceConfig = Depends(get_app_config),
) -> Response:
    """
    Feed restricted to one release kind (last, first, major, minor or patch).
    """
    return _feed_response(request, builder, config, _release_from_path(release))


# ---------------------------------------------------------------------------
# 2. JSON listing
# ---------------------------------------------------------------------------


@router.get("/api/releases")
def list_releases(
    request: Request,
    builder: QueryBuilder = Depends(get_query_builder),
    config: ServiceConfig = Depends(get_app_config),
) -> List[dict]:
    _, records = _run_query(request, builder, ReleaseKind.ANY, config.query_limit)
    return [_record_payload(record) for record in records]


@router.get("/api/{release}/releases")
def list_release_kind(
    release: str,
    request: Request,
    builder: QueryBuilder = Depends(get_query_builder),
    config: ServiceConfig = Depends(get_app_config),
) -> List[dict]:
    _, records = _run_query(request, builder, _release_from_path(release), config.query_limit)
    return [_record_payload(record) for record in records]
