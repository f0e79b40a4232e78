"""Dependency feed helper tests"""

import json
from pathlib import Path

import pytest

from greenwood.tools.deps_feed import feed_urls, main, project_dependencies


_APPLICATION = {
    "type": "application",
    "dependencies": {
        "direct": {"elm/core": "1.0.5", "elm/html": "1.0.0", "alice/ui": "2.0.0"},
        "indirect": {"elm/virtual-dom": "1.0.3"},
    },
}

_PACKAGE = {
    "type": "package",
    "dependencies": {"elm/core": "1.0.0 <= v < 2.0.0", "bob/parser": "1.0.0 <= v < 2.0.0"},
}


class TestDependencies:
    def test_application(self) -> None:
        assert project_dependencies(_APPLICATION) == [
            "elm/core", "elm/html", "alice/ui", "elm/virtual-dom",
        ]

    def test_package(self) -> None:
        assert project_dependencies(_PACKAGE) == ["elm/core", "bob/parser"]

    def test_urls_group_by_author(self) -> None:
        urls = feed_urls(_APPLICATION, site_url="https://feeds.test/")

        assert urls["web"] == "https://feeds.test?elm=core+html+virtual-dom&alice=ui"
        assert urls["rss"] == "https://feeds.test/.rss?elm=core+html+virtual-dom&alice=ui"


class TestMain:
    def test_prints_urls(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "elm.json"
        path.write_text(json.dumps(_PACKAGE), encoding="utf-8")

        main([str(path)])

        out = capsys.readouterr().out
        assert "https://elm-greenwood.com/.rss?elm=core&bob=parser" in out

    def test_missing_file(self, tmp_path: Path, capsys) -> None:
        with pytest.raises(SystemExit) as excinfo:
            main([str(tmp_path / "nope.json")])

        assert excinfo.value.code == 1
        assert "file not found" in capsys.readouterr().out
