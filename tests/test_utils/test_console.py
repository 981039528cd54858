from __future__ import annotations

import sys
from typing import Generator
from unittest.mock import patch

import pytest
from rich.table import Table
from rich.console import Console

from apt_downgrade.models import (
    ChangeKind,
    PlanEntry,
    ResolutionPlan,
    ResolutionRequest,
    Version,
)
from apt_downgrade.utils.console import (
    APT_DOWNGRADE_THEME,
    _get_console,
    _should_use_color,
    colorize_change,
    confirm,
    get_raw_console,
    print_error,
    print_plan,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def reset_console() -> Generator[None, None, None]:
    """Reset the console singleton around each test."""
    reconfigure_console()
    yield
    reconfigure_console()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove environment variables that affect color detection."""
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("CI", raising=False)


def make_plan(*entries: PlanEntry) -> ResolutionPlan:
    return ResolutionPlan(ResolutionRequest.parse("libfoo", "1.0"), tuple(entries))


def entry(name: str, old, new: str) -> PlanEntry:
    old_version = Version.parse(old) if old else None
    new_version = Version.parse(new)
    return PlanEntry(name, old_version, new_version, ChangeKind.between(old_version, new_version))


# ==============================================================================
# Console lifecycle
# ==============================================================================


@pytest.mark.unit
class TestThemeConfiguration:
    """Tests for APT_DOWNGRADE_THEME."""

    @pytest.mark.parametrize(
        "style_name", ["success", "error", "warning", "info", "dim", "highlight"]
    )
    def test_theme_has_style(self, style_name: str) -> None:
        assert style_name in APT_DOWNGRADE_THEME.styles


@pytest.mark.unit
class TestShouldUseColor:
    """Tests for _should_use_color."""

    def test_no_color_env_disables_color(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NO_COLOR", "1")

        with patch.object(sys.stdout, "isatty", return_value=True):
            assert _should_use_color() is False

    def test_ci_env_disables_color(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CI", "true")

        with patch.object(sys.stdout, "isatty", return_value=True):
            assert _should_use_color() is False

    @pytest.mark.parametrize("tty", [True, False])
    def test_follows_tty(self, clean_env: None, tty: bool) -> None:
        with patch.object(sys.stdout, "isatty", return_value=tty):
            assert _should_use_color() is tty

    def test_isatty_error(self, clean_env: None) -> None:
        with patch.object(sys.stdout, "isatty", side_effect=OSError):
            assert _should_use_color() is False


@pytest.mark.unit
class TestGetConsole:
    """Tests for the console singleton."""

    def test_singleton(self) -> None:
        assert _get_console() is get_raw_console()
        assert isinstance(_get_console(), Console)

    def test_reconfigure_creates_new_instance(self) -> None:
        first = _get_console()

        reconfigure_console()

        assert _get_console() is not first

    def test_respects_no_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")

        assert _get_console().no_color is True


# ==============================================================================
# Status messages
# ==============================================================================


@pytest.mark.unit
class TestStatusMessages:
    """Tests for print_success, print_error and print_warning."""

    def test_print_success(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_success("Downgraded libfoo")

        mock_print.assert_called_once_with("[OK] Downgraded libfoo", style="success")

    def test_print_error(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_error("No plan")

        mock_print.assert_called_once_with("[ERROR] No plan", style="error")

    def test_print_warning_custom_prefix(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_warning("careful", prefix="!")

        mock_print.assert_called_once_with("! careful", style="warning")


# ==============================================================================
# Tables and plans
# ==============================================================================


@pytest.mark.unit
class TestPrintTable:
    """Tests for print_table."""

    def test_prints_table(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([{"a": 1, "b": 2}], title="T", caption="C")

        table = mock_print.call_args[0][0]
        assert isinstance(table, Table)
        assert [c.header for c in table.columns] == ["a", "b"]
        assert table.title == "T"
        assert table.caption == "C"
        assert table.row_count == 1

    def test_empty_data_prints_nothing(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([])

        mock_print.assert_not_called()

    def test_custom_headers_and_missing_values(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([{"a": 1}], headers=["b", "a"])

        table = mock_print.call_args[0][0]
        assert [c.header for c in table.columns] == ["b", "a"]

    def test_row_styler(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([{"a": 1}, {"a": 2}], row_styler=lambda r: "red" if r["a"] == 2 else None)

        table = mock_print.call_args[0][0]
        assert [row.style for row in table.rows] == [None, "red"]


@pytest.mark.unit
class TestColorizeChange:
    """Tests for colorize_change."""

    @pytest.mark.parametrize(
        "kind,expected",
        [
            (ChangeKind.DOWNGRADE, "[yellow]downgrade[/yellow]"),
            (ChangeKind.UPGRADE, "[cyan]upgrade[/cyan]"),
            (ChangeKind.INSTALL, "[magenta]install[/magenta]"),
            (ChangeKind.UNCHANGED, "[dim]unchanged[/dim]"),
        ],
    )
    def test_labels(self, kind: ChangeKind, expected: str) -> None:
        assert colorize_change(kind) == expected


@pytest.mark.unit
class TestPrintPlan:
    """Tests for print_plan."""

    def test_unchanged_entries_hidden_by_default(self) -> None:
        plan = make_plan(entry("libbar", "2.0", "2.0"), entry("libfoo", "1.2", "1.0"))

        with patch.object(Console, "print") as mock_print:
            print_plan(plan)

        table = mock_print.call_args[0][0]
        assert table.row_count == 1
        assert table.title == "Plan for libfoo=1.0"
        assert table.caption == "1 change(s), 2 package(s) examined"

    def test_show_unchanged(self) -> None:
        plan = make_plan(entry("libbar", "2.0", "2.0"), entry("libfoo", "1.2", "1.0"))

        with patch.object(Console, "print") as mock_print:
            print_plan(plan, show_unchanged=True)

        assert mock_print.call_args[0][0].row_count == 2

    def test_nothing_to_change(self) -> None:
        plan = make_plan(entry("libfoo", "1.0", "1.0"))

        with patch.object(Console, "print") as mock_print:
            print_plan(plan)

        mock_print.assert_called_once_with("[OK] Nothing to change", style="success")

    def test_rendered_output(self, capsys: pytest.CaptureFixture) -> None:
        plan = make_plan(entry("libnew", None, "0.1"), entry("libfoo", "1.2", "1.0"))

        print_plan(plan)

        out = capsys.readouterr().out
        assert "libnew" in out
        assert "(none)" in out
        assert "install" in out
        assert "downgrade" in out


# ==============================================================================
# Confirmation prompt
# ==============================================================================


@pytest.mark.unit
class TestConfirm:
    """Tests for confirm user interaction."""

    @pytest.mark.parametrize(
        "answer,expected",
        [("y", True), ("YES", True), ("n", False), ("no", False), ("maybe", False)],
    )
    def test_answers(self, answer: str, expected: bool) -> None:
        with patch("builtins.input", return_value=answer):
            assert confirm("Proceed?") is expected

    def test_empty_uses_default(self) -> None:
        with patch("builtins.input", return_value=""):
            assert confirm("Proceed?", default=True) is True

    @pytest.mark.parametrize("error", [KeyboardInterrupt, EOFError])
    def test_interrupt_declines(self, error) -> None:
        with patch("builtins.input", side_effect=error):
            assert confirm("Proceed?", default=True) is False
