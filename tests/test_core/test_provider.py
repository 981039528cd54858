"""Unit tests for apt_downgrade.core.provider module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from apt_downgrade.core.provider import MetadataProvider, StaticMetadataProvider
from apt_downgrade.exceptions import (
    AptDowngradeError,
    MalformedRelation,
    MalformedVersion,
    MetadataUnavailable,
)
from apt_downgrade.models import Version


SNAPSHOT = {
    "packages": {
        "libfoo": {
            "installed": "1.2-1",
            "versions": [
                {"version": "1.2-1", "depends": "libc6 (>= 2.3)"},
                {"version": "1.0-1", "breaks": "foo-tools (<< 1.0)"},
            ],
        },
        "foo-tools": {
            "installed": "1.1",
            "versions": [{"version": "1.1", "depends": "libfoo (>= 1.1)"}],
        },
        "libc6": {
            "versions": [{"version": "2.36-9", "pre_depends": "libgcc-s1"}],
        },
    }
}


@pytest.fixture
def provider() -> StaticMetadataProvider:
    return StaticMetadataProvider.from_mapping(SNAPSHOT)


@pytest.mark.unit
class TestMetadataProvider:
    """Tests for the abstract query interface."""

    def test_cannot_instantiate_interface(self) -> None:
        with pytest.raises(TypeError):
            MetadataProvider()


@pytest.mark.unit
class TestFromMapping:
    """Tests for StaticMetadataProvider.from_mapping."""

    @pytest.mark.asyncio
    async def test_installed_versions(self, provider) -> None:
        assert await provider.installed_version("libfoo") == Version.parse("1.2-1")
        assert await provider.installed_version("libc6") is None

    @pytest.mark.asyncio
    async def test_candidates_keep_declared_fields(self, provider) -> None:
        """Test relation fields are parsed and merged."""
        libfoo = {str(c.version): c for c in await provider.candidates("libfoo")}
        libc6 = (await provider.candidates("libc6"))[0]

        assert [str(r) for r in libfoo["1.2-1"].depends] == ["libc6 (>= 2.3)"]
        assert [str(e) for e in libfoo["1.0-1"].conflicts] == ["foo-tools (<< 1.0)"]
        assert [str(r) for r in libc6.depends] == ["libgcc-s1"]

    def test_missing_packages_table(self) -> None:
        with pytest.raises(AptDowngradeError, match="packages"):
            StaticMetadataProvider.from_mapping({"pkgs": {}})

    def test_entry_must_be_table(self) -> None:
        with pytest.raises(AptDowngradeError) as exc_info:
            StaticMetadataProvider.from_mapping({"packages": {"a": "1.0"}})

        assert exc_info.value.details["package"] == "a"

    @pytest.mark.parametrize(
        "version_entry",
        [{"depends": "b"}, "1.0"],
        ids=["missing-version", "not-a-table"],
    )
    def test_version_entry_needs_version(self, version_entry) -> None:
        """Test a version entry without a 'version' key names its package."""
        with pytest.raises(AptDowngradeError, match="'version' key") as exc_info:
            StaticMetadataProvider.from_mapping(
                {"packages": {"a": {"versions": [version_entry]}}}
            )

        assert exc_info.value.details["package"] == "a"

    def test_invalid_version(self) -> None:
        with pytest.raises(MalformedVersion):
            StaticMetadataProvider.from_mapping(
                {"packages": {"a": {"versions": [{"version": "1.0 beta"}]}}}
            )

    def test_invalid_relation(self) -> None:
        with pytest.raises(MalformedRelation):
            StaticMetadataProvider.from_mapping(
                {
                    "packages": {
                        "a": {"versions": [{"version": "1.0", "depends": "b (>> )"}]}
                    }
                }
            )


@pytest.mark.unit
class TestFromJsonFile:
    """Tests for StaticMetadataProvider.from_json_file."""

    @pytest.mark.asyncio
    async def test_loads_snapshot(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps(SNAPSHOT), encoding="utf-8")

        provider = StaticMetadataProvider.from_json_file(path)

        assert len(await provider.candidates("libfoo")) == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(AptDowngradeError, match="Cannot load snapshot"):
            StaticMetadataProvider.from_json_file(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshot.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(AptDowngradeError) as exc_info:
            StaticMetadataProvider.from_json_file(path)

        assert exc_info.value.details["path"] == str(path)


@pytest.mark.unit
class TestQueries:
    """Tests for the provider's query behaviour."""

    @pytest.mark.asyncio
    async def test_unknown_package(self, provider) -> None:
        with pytest.raises(MetadataUnavailable) as exc_info:
            await provider.candidates("ghost")

        assert exc_info.value.package == "ghost"
        assert exc_info.value.reason == "unknown package"

    @pytest.mark.asyncio
    async def test_unavailable_package_fails_every_query(self) -> None:
        provider = StaticMetadataProvider([], unavailable=["down"])

        with pytest.raises(MetadataUnavailable):
            await provider.installed_version("down")
        with pytest.raises(MetadataUnavailable):
            await provider.reverse_dependencies("down")

    @pytest.mark.asyncio
    async def test_reverse_dependencies_use_installed_versions(self, provider) -> None:
        """Test dependents are found from their installed version only."""
        assert await provider.reverse_dependencies("libfoo") == ["foo-tools"]
        assert await provider.reverse_dependencies("libc6") == ["libfoo"]
        # libfoo 1.0-1 breaks foo-tools, but 1.0-1 is not installed
        assert await provider.reverse_dependencies("foo-tools") == []

    @pytest.mark.asyncio
    async def test_calls_are_recorded(self, provider) -> None:
        await provider.candidates("LibFoo")
        await provider.installed_version("libfoo")

        assert provider.calls == ["libfoo", "libfoo"]
