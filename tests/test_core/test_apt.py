"""Unit tests for apt_downgrade.core.apt module.

No APT tools are run: command output is canned and ``run_command`` is
patched out wherever the provider would spawn a process.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from apt_downgrade.core import apt as apt_module
from apt_downgrade.core.apt import (
    AptEnv,
    AptMetadataProvider,
    archive_path,
    parse_policy_installed,
    parse_rdepends_output,
    parse_show_output,
    read_apt_env,
    run_command,
)
from apt_downgrade.exceptions import (
    AptDowngradeError,
    CommandError,
    MetadataUnavailable,
)
from apt_downgrade.models import PackageCandidate, Version


POLICY_INSTALLED = """\
libfoo:
  Installed: 1.2-1
  Candidate: 1.2-1
  Version table:
 *** 1.2-1 500
        500 http://deb.debian.org/debian bookworm/main amd64 Packages
        100 /var/lib/dpkg/status
"""

POLICY_NOT_INSTALLED = """\
libfoo:
  Installed: (none)
  Candidate: 1.2-1
"""

SHOW_OUTPUT = """\
Package: libfoo
Version: 1.2-1
Depends: libc6 (>= 2.34), libbar | libbaz
Breaks: foo-tools (<< 1.0)

Package: libfoo
Version: 1.0-1
Pre-Depends: dpkg (>= 1.19)
Depends: libc6 (>= 2.31)
Conflicts: libfoo-old

Package: libfoo-doc
Version: 1.2-1
"""

RDEPENDS_OUTPUT = """\
libfoo
Reverse Depends:
  foo-tools
 |libbar
  foo-tools
  libqux
"""

APT_CONFIG_OUTPUT = """\
CACHE_ROOT_DIR='var/cache/apt/'
CACHE_ARCHIVE_SUBDIR='archives/'
ARCH='amd64'
"""


# ============================================================================
# Parsers
# ============================================================================


@pytest.mark.unit
class TestParsePolicy:
    """Tests for parse_policy_installed."""

    def test_installed(self) -> None:
        assert parse_policy_installed("libfoo", POLICY_INSTALLED) == Version.parse("1.2-1")

    def test_not_installed(self) -> None:
        assert parse_policy_installed("libfoo", POLICY_NOT_INSTALLED) is None

    def test_unknown_package_prints_nothing(self) -> None:
        assert parse_policy_installed("libfoo", "") is None

    def test_garbage_version(self) -> None:
        with pytest.raises(MetadataUnavailable) as exc_info:
            parse_policy_installed("libfoo", "  Installed: not a version\n")

        assert exc_info.value.package == "libfoo"


@pytest.mark.unit
class TestParseShow:
    """Tests for parse_show_output."""

    def test_stanzas_become_candidates(self) -> None:
        candidates = parse_show_output("libfoo", SHOW_OUTPUT)

        assert [str(c) for c in candidates] == ["libfoo=1.2-1", "libfoo=1.0-1"]

    def test_relations_are_merged(self) -> None:
        newer, older = parse_show_output("libfoo", SHOW_OUTPUT)

        assert [str(r) for r in newer.depends] == ["libc6 (>= 2.34)", "libbar | libbaz"]
        assert [str(e) for e in newer.conflicts] == ["foo-tools (<< 1.0)"]
        assert [str(r) for r in older.depends] == ["dpkg (>= 1.19)", "libc6 (>= 2.31)"]
        assert [str(e) for e in older.conflicts] == ["libfoo-old"]

    def test_other_packages_are_skipped(self) -> None:
        assert parse_show_output("libfoo-doc", SHOW_OUTPUT)[0].name == "libfoo-doc"
        assert parse_show_output("ghost", SHOW_OUTPUT) == []

    def test_bad_stanza_is_skipped(self) -> None:
        """Test one malformed stanza does not hide the valid ones."""
        output = (
            "Package: libfoo\nVersion: 1.2\nDepends: libc6 (>= )\n\n"
            "Package: libfoo\nVersion: 1.0\nDepends: libc6\n"
        )

        with patch.object(apt_module.logger, "warning") as warning:
            candidates = parse_show_output("libfoo", output)

        assert [str(c) for c in candidates] == ["libfoo=1.0"]
        warning.assert_called_once()
        assert warning.call_args[0][1:3] == ("libfoo", "1.2")


@pytest.mark.unit
class TestParseRdepends:
    """Tests for parse_rdepends_output."""

    def test_names_are_deduplicated_and_sorted(self) -> None:
        assert parse_rdepends_output(RDEPENDS_OUTPUT) == ["foo-tools", "libbar", "libqux"]

    def test_no_dependents(self) -> None:
        assert parse_rdepends_output("libfoo\nReverse Depends:\n") == []


# ============================================================================
# Environment and commands
# ============================================================================


@pytest.mark.unit
class TestArchivePath:
    """Tests for archive_path."""

    def test_native_architecture(self, tmp_path: Path) -> None:
        deb = tmp_path / "libfoo_1.0-1_amd64.deb"
        deb.write_bytes(b"")

        env = AptEnv(tmp_path, "amd64")

        assert archive_path(env, "libfoo", Version.parse("1.0-1")) == deb

    def test_epoch_is_escaped(self, tmp_path: Path) -> None:
        deb = tmp_path / "libfoo_1%3a2.0_all.deb"
        deb.write_bytes(b"")

        env = AptEnv(tmp_path, "amd64")

        assert archive_path(env, "libfoo", Version.parse("1:2.0")) == deb

    def test_not_cached(self, tmp_path: Path) -> None:
        assert archive_path(AptEnv(tmp_path, "amd64"), "libfoo", Version.parse("1.0")) is None


@pytest.mark.unit
class TestRunCommand:
    """Tests for run_command against harmless system binaries."""

    @pytest.mark.asyncio
    async def test_missing_binary(self) -> None:
        with pytest.raises(CommandError, match="Cannot run"):
            await run_command(["apt-downgrade-no-such-binary"])

    @pytest.mark.asyncio
    async def test_non_zero_exit(self) -> None:
        with pytest.raises(CommandError) as exc_info:
            await run_command(["false"])

        assert exc_info.value.returncode == 1
        assert exc_info.value.command == ("false",)


@pytest.mark.unit
class TestReadAptEnv:
    """Tests for read_apt_env."""

    @pytest.mark.asyncio
    async def test_parses_shell_output(self) -> None:
        with patch.object(
            apt_module, "run_command", AsyncMock(return_value=APT_CONFIG_OUTPUT)
        ):
            env = await read_apt_env()

        assert env == AptEnv(Path("/var/cache/apt/archives"), "amd64")

    @pytest.mark.asyncio
    async def test_missing_keys(self) -> None:
        with patch.object(
            apt_module, "run_command", AsyncMock(return_value="ARCH='amd64'\n")
        ):
            with pytest.raises(CommandError, match="CACHE_ROOT_DIR"):
                await read_apt_env()


# ============================================================================
# Provider
# ============================================================================


def _fake_apt(outputs):
    """Return a run_command replacement keyed on the apt-cache subcommand."""

    async def fake(args, *, env=None):
        result = outputs[args[1]]
        if isinstance(result, Exception):
            raise result
        return result

    return fake


@pytest.fixture
def provider(tmp_path: Path) -> AptMetadataProvider:
    return AptMetadataProvider(cache_dir=str(tmp_path), architecture="amd64")


@pytest.mark.unit
class TestAptMetadataProvider:
    """Tests for AptMetadataProvider with canned command output."""

    @pytest.mark.asyncio
    async def test_installed_version(self, provider) -> None:
        with patch.object(apt_module, "run_command", _fake_apt({"policy": POLICY_INSTALLED})):
            assert await provider.installed_version("LibFoo") == Version.parse("1.2-1")

    @pytest.mark.asyncio
    async def test_failed_command_is_unavailable(self, provider) -> None:
        failure = CommandError("apt-cache exited with status 100", returncode=100)

        with patch.object(apt_module, "run_command", _fake_apt({"policy": failure})):
            with pytest.raises(MetadataUnavailable) as exc_info:
                await provider.installed_version("libfoo")

        assert "status 100" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_candidates_from_package_lists(self, provider) -> None:
        with patch.object(apt_module, "run_command", _fake_apt({"show": SHOW_OUTPUT})):
            candidates = await provider.candidates("libfoo")

        assert [str(c.version) for c in candidates] == ["1.2-1", "1.0-1"]

    @pytest.mark.asyncio
    async def test_local_archives_are_added(self, provider, tmp_path: Path) -> None:
        """Test cached .deb files fill in versions the lists no longer carry."""
        for filename in (
            "libfoo_0.9-1_amd64.deb",
            "libfoo_1.0-1_amd64.deb",
            "libfoo_1%3a0.1_all.deb",
            "libfoo-doc_0.9-1_all.deb",
            "libfoo_0.8-1_i386.deb",
        ):
            (tmp_path / filename).write_bytes(b"")

        def fake_read_deb(name: str, path: Path) -> PackageCandidate:
            version = path.name.split("_")[1].replace("%3a", ":")
            return PackageCandidate.from_fields(name, version)

        with patch.object(apt_module, "run_command", _fake_apt({"show": SHOW_OUTPUT})), \
                patch.object(apt_module, "_read_deb", fake_read_deb):
            candidates = await provider.candidates("libfoo")

        assert [str(c.version) for c in candidates] == [
            "1.2-1",
            "1.0-1",
            "0.9-1",
            "1:0.1",
        ]

    @pytest.mark.asyncio
    async def test_unreadable_archive_is_skipped(self, provider, tmp_path: Path) -> None:
        (tmp_path / "libfoo_0.9-1_amd64.deb").write_bytes(b"not an ar archive")

        with patch.object(apt_module, "run_command", _fake_apt({"show": SHOW_OUTPUT})):
            candidates = await provider.candidates("libfoo")

        assert len(candidates) == 2

    @pytest.mark.asyncio
    async def test_unknown_everywhere(self, provider) -> None:
        failure = CommandError("apt-cache exited with status 100", returncode=100)

        with patch.object(apt_module, "run_command", _fake_apt({"show": failure})):
            with pytest.raises(MetadataUnavailable, match="libfoo"):
                await provider.candidates("libfoo")

    @pytest.mark.asyncio
    async def test_reverse_dependencies(self, provider) -> None:
        fake = AsyncMock(return_value=RDEPENDS_OUTPUT)

        with patch.object(apt_module, "run_command", fake):
            names = await provider.reverse_dependencies("libfoo")

        assert names == ["foo-tools", "libbar", "libqux"]
        args = fake.await_args.args[0]
        assert args[:3] == ("apt-cache", "rdepends", "--installed")
        assert args[-1] == "libfoo"


@pytest.mark.unit
class TestProviderEnvironment:
    """Tests for AptMetadataProvider.environment."""

    @pytest.mark.asyncio
    async def test_overrides_skip_apt_config(self, tmp_path: Path) -> None:
        provider = AptMetadataProvider(cache_dir=str(tmp_path), architecture="arm64")
        fake = AsyncMock()

        with patch.object(apt_module, "run_command", fake):
            env = await provider.environment()

        assert env == AptEnv(tmp_path, "arm64")
        fake.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_detected_once(self) -> None:
        provider = AptMetadataProvider()
        fake = AsyncMock(return_value=APT_CONFIG_OUTPUT)

        with patch.object(apt_module, "run_command", fake):
            first = await provider.environment()
            second = await provider.environment()

        assert first is second
        assert first.architecture == "amd64"
        assert fake.await_count == 1

    @pytest.mark.asyncio
    async def test_apt_config_failure_disables_archives(self) -> None:
        provider = AptMetadataProvider()
        fake = AsyncMock(side_effect=CommandError("Cannot run apt-config"))

        with patch.object(apt_module, "run_command", fake):
            assert await provider.environment() is None


@pytest.mark.unit
class TestReadDeb:
    """Tests for reading control data from archives."""

    def test_unreadable_archive(self, tmp_path: Path) -> None:
        path = tmp_path / "libfoo_1.0_amd64.deb"
        path.write_bytes(b"garbage")

        with pytest.raises(AptDowngradeError, match="unreadable archive"):
            apt_module._read_deb("libfoo", path)

    def test_control_fields_are_used(self, tmp_path: Path) -> None:
        path = tmp_path / "libfoo_1%3a1.0_amd64.deb"
        control = {"Package": "libfoo", "Version": "1:1.0", "Depends": "libc6"}

        with patch.object(apt_module, "DebFile") as deb_file:
            deb_file.return_value.debcontrol.return_value = control
            candidate = apt_module._read_deb("libfoo", path)

        assert str(candidate) == "libfoo=1:1.0"
        assert [str(r) for r in candidate.depends] == ["libc6"]
