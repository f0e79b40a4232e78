"""
Render package records as an RSS 2.0 document.
"""
from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from greenwood.domain.models import PackageRecord, ReleaseKind
from greenwood.services.query import SEARCH_KEY

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"

REGISTRY_URL = "https://package.elm-lang.org"

_RELEASE_LABELS = {
    ReleaseKind.ANY: "releases",
    ReleaseKind.LAST: "last release",
    ReleaseKind.FIRST: "first release",
    ReleaseKind.MAJOR: "major releases",
    ReleaseKind.MINOR: "minor releases",
    ReleaseKind.PATCH: "patch releases",
}

_RELEASE_CATEGORIES = {
    ReleaseKind.ANY: "Elm/Packages/Releases",
    ReleaseKind.LAST: "Elm/Packages/Last Releases",
    ReleaseKind.FIRST: "Elm/Packages/First Releases",
    ReleaseKind.MAJOR: "Elm/Packages/Major Releases",
    ReleaseKind.MINOR: "Elm/Packages/Minor Releases",
    ReleaseKind.PATCH: "Elm/Packages/Patch Releases",
}

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["xml", "html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def rfc2822(timestamp: int) -> str:
    return format_datetime(datetime.fromtimestamp(timestamp, tz=timezone.utc))


def channel_title(filter: Mapping[str, str], release: ReleaseKind) -> str:
    label = _RELEASE_LABELS[release]
    packages = [
        f"{author}/{names.replace(' ', '+')}" for author, names in filter.items()
        if author != SEARCH_KEY
    ]
    if not packages:
        return f"Elm packages {label}"
    return f"Elm package {label} of {', '.join(packages)}"


def item_link(record: PackageRecord, registry_url: str = REGISTRY_URL) -> str:
    return f"{registry_url}/packages/{record.author}/{record.name}/{record.version}/"


def item_categories(record: PackageRecord) -> List[Dict[str, str]]:
    categories = [
        {"domain": "dependency", "name": f"{package} {constraint}"}
        for package, constraint in sorted(record.dependencies.items())
    ]
    categories.append({"domain": "elm", "name": f"elm {record.elm_version}"})
    categories.append({"domain": "license", "name": record.license})
    return categories


def feed_item(record: PackageRecord, registry_url: str = REGISTRY_URL) -> Dict[str, object]:
    return {
        "title": f"{record.repo} {record.version}",
        "link": item_link(record, registry_url),
        "pub_date": rfc2822(record.timestamp),
        "description": record.summary,
        "comments": f"https://github.com/{record.author}/{record.name}/tree/{record.version}",
        "categories": item_categories(record),
        "first_release": record.is_first_release,
    }


def render_feed(
    records: Sequence[PackageRecord],
    filter: Mapping[str, str],
    release: ReleaseKind,
    site_url: str = "https://elm-greenwood.com",
    registry_url: str = REGISTRY_URL,
    now: Optional[datetime] = None,
) -> str:
    """
    Build the RSS channel for records already ordered by the query.

    Args:
        records: Records to publish, newest first
        filter: Filter map used for the query, only used in the channel title
        release: Release kind used for the query
        site_url: Public URL of this service
        registry_url: Registry the items link to
        now: Current time, used when there is no record to date the channel
    """
    now = now or datetime.now(timezone.utc)
    title = channel_title(filter, release)
    if records:
        last_build = rfc2822(max(record.timestamp for record in records))
    else:
        last_build = format_datetime(now)

    template = _environment.get_template("feed.xml")
    return template.render(
        title=title,
        link=site_url,
        description=f"{title} from {site_url.split('://', 1)[-1]}",
        pub_date=last_build,
        copyright=f"Elm Greenwood © {now.year}",
        category={"domain": registry_url, "name": _RELEASE_CATEGORIES[release]},
        items=[feed_item(record, registry_url) for record in records],
    )
