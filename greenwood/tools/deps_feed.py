"""
Print the feed URLs following every dependency of an elm.json project.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List

DEFAULT_SITE_URL = "https://elm-greenwood.com"


def project_dependencies(elm_json: Dict[str, Any]) -> List[str]:
    """
    List dependency names of a package (flat mapping) or an application
    (direct and indirect mappings).
    """
    dependencies = elm_json.get("dependencies", {})
    if elm_json.get("type") == "package":
        return list(dependencies)
    return list(dependencies.get("direct", {})) + list(dependencies.get("indirect", {}))


def feed_query(dependencies: List[str]) -> str:
    """Group dependencies by author: "author=a+b&other=c"."""
    by_author: Dict[str, List[str]] = {}
    for dependency in dependencies:
        author, _, name = dependency.partition("/")
        by_author.setdefault(author, []).append(name)
    return "&".join(f"{author}={'+'.join(names)}" for author, names in by_author.items())


def feed_urls(elm_json: Dict[str, Any], site_url: str = DEFAULT_SITE_URL) -> Dict[str, str]:
    query = feed_query(project_dependencies(elm_json))
    site_url = site_url.rstrip("/")
    return {
        "web": f"{site_url}?{query}",
        "rss": f"{site_url}/.rss?{query}",
    }


def usage() -> None:
    print("Usage: python -m greenwood.tools.deps_feed [path/to/elm.json]")
    sys.exit(1)


def main(argv: List[str]) -> None:
    if argv and argv[0] in ("--help", "-h"):
        usage()

    elm_json_path = Path(argv[0] if argv else "elm.json")
    if not elm_json_path.is_file():
        print(f"{elm_json_path} file not found\n")
        usage()

    urls = feed_urls(json.loads(elm_json_path.read_text(encoding="utf-8")))
    print("Web feed:")
    print(urls["web"])
    print("\nRSS feed:")
    print(urls["rss"])


if __name__ == "__main__":
    main(sys.argv[1:])
