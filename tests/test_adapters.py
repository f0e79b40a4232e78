"""Format adapter tests"""

import pytest

from greenwood.domain.errors import NormalizationRejected
from greenwood.domain.models import LEGACY_ELM_VERSION, NaturalKey
from greenwood.services.importer.adapters import (
    CurrentFormatAdapter,
    LegacyFormatAdapter,
    PreVersionFieldAdapter,
    adapter_for,
    parse_release_token,
    parse_version,
)


def _legacy(elm_version=None) -> dict:
    metadata = {
        "version": "1.0.0",
        "summary": "Old package",
        "repository": "https://github.com/alice/foo.git",
        "license": "MIT",
        "source-directories": ["src"],
        "exposed-modules": ["Foo"],
        "dependencies": {"elm-lang/core": "4.0.0 <= v < 5.0.0"},
    }
    if elm_version is not None:
        metadata["elm-version"] = elm_version
    return metadata


class TestCurrentFormat:
    def test_normalize(self, make_elm_json) -> None:
        record = CurrentFormatAdapter().normalize(
            "alice/foo", "1.2.3", make_elm_json(summary="Foo"), 1550000000
        )

        assert record.natural_key == NaturalKey("alice", "foo", 1, 2, 3)
        assert record.timestamp == 1550000000
        assert record.summary == "Foo"
        assert record.license == "BSD-3-Clause"
        assert record.elm_version == "0.19.0 <= v < 0.20.0"
        assert record.dependencies == {"elm/core": "1.0.0 <= v < 2.0.0"}
        assert record.format == 19

    def test_name_split_on_first_slash(self, make_elm_json) -> None:
        with pytest.raises(NormalizationRejected):
            # Splitting on the first slash leaves "foo/bar" as the name.
            CurrentFormatAdapter().normalize("alice/foo/bar", "1.0.0", make_elm_json(), 1)

    @pytest.mark.parametrize("repo", ["alice", "/foo", "alice/", ""])
    def test_invalid_repo(self, repo, make_elm_json) -> None:
        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize(repo, "1.0.0", make_elm_json(), 1)

    @pytest.mark.parametrize("version", ["1.0", "1.0.0.0", "1.x.0", "", "-1.0.0", "1.0.0-beta", "².0.0"])
    def test_invalid_version(self, version, make_elm_json) -> None:
        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize("alice/foo", version, make_elm_json(), 1)

    def test_missing_timestamp(self, make_elm_json) -> None:
        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize("alice/foo", "1.0.0", make_elm_json(), None)

    def test_missing_metadata(self) -> None:
        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize("alice/foo", "1.0.0", None, 1)

    def test_missing_compatibility_field(self, make_elm_json) -> None:
        metadata = make_elm_json()
        del metadata["elm-version"]

        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize("alice/foo", "1.0.0", metadata, 1)

    def test_malformed_dependencies(self, make_elm_json) -> None:
        metadata = make_elm_json()
        metadata["dependencies"] = ["elm/core"]

        with pytest.raises(NormalizationRejected):
            CurrentFormatAdapter().normalize("alice/foo", "1.0.0", metadata, 1)


class TestLegacyFormats:
    def test_version_field_present(self) -> None:
        record = LegacyFormatAdapter().normalize(
            "alice/foo", "1.0.0", _legacy("0.18.0 <= v < 0.19.0"), 1445412480
        )

        assert record.format == 15
        assert record.elm_version == "0.18.0 <= v < 0.19.0"
        assert record.dependencies == {"elm-lang/core": "4.0.0 <= v < 5.0.0"}
        assert record.license == "MIT"

    @pytest.mark.parametrize("elm_version", [None, ""])
    def test_missing_version_field_forces_sentinel(self, elm_version) -> None:
        record = LegacyFormatAdapter().normalize("alice/foo", "1.0.0", _legacy(elm_version), 1)

        assert record.elm_version == LEGACY_ELM_VERSION == "0.14.0 <= v < 0.15.0"
        assert record.format == 14

    def test_pre_version_field_adapter(self) -> None:
        record = PreVersionFieldAdapter().normalize("alice/foo", "1.0.0", _legacy(), 1)

        assert record.elm_version == LEGACY_ELM_VERSION
        assert record.format == 14

    def test_minimal_document(self) -> None:
        record = LegacyFormatAdapter().normalize("alice/foo", "1.0.0", {}, 1)

        assert record.summary == ""
        assert record.dependencies == {}
        assert record.format == 14


class TestDispatch:
    def test_known_formats(self) -> None:
        assert isinstance(adapter_for(19), CurrentFormatAdapter)
        assert isinstance(adapter_for(15), LegacyFormatAdapter)
        assert isinstance(adapter_for(14), PreVersionFieldAdapter)

    @pytest.mark.parametrize("format", [13, 16, 0])
    def test_unsupported_format(self, format) -> None:
        with pytest.raises(NormalizationRejected):
            adapter_for(format)


class TestParsing:
    def test_release_token(self) -> None:
        repo, version, key = parse_release_token("alice/foo@1.2.3")

        assert repo == "alice/foo"
        assert version == "1.2.3"
        assert key == NaturalKey("alice", "foo", 1, 2, 3)
        assert str(key) == "alice/foo@1.2.3"

    @pytest.mark.parametrize("token", ["alice/foo", "alice/foo@1.0", "alice@1.0.0", "a/b@1.0.0@x"])
    def test_invalid_release_token(self, token) -> None:
        with pytest.raises(NormalizationRejected):
            parse_release_token(token)

    def test_version(self) -> None:
        assert parse_version("10.0.42") == (10, 0, 42)
